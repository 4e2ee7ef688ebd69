"""AgreementCatalog — discover replication agreements on a supplier.

Agreements are read fresh from the directory on every call to
:meth:`AgreementCatalog.discover` and are never cached across cycles.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from repl_rotator.directory.base import DirectorySession, Entry, Scope

logger = logging.getLogger(__name__)

AGREEMENT_OBJECT_CLASS = "nsds5replicationagreement"
AGREEMENT_FILTER = f"(objectclass={AGREEMENT_OBJECT_CLASS})"
AGREEMENT_ATTRIBUTES = [
    "cn",
    "nsDS5ReplicaHost",
    "nsDS5ReplicaPort",
    "nsDS5ReplicaBindDN",
    "nsds5ReplicaEnabled",
]

_ENABLED_VALUES = frozenset({"on", "true"})


@dataclass(frozen=True)
class ReplicationAgreement:
    """One directional supplier -> consumer replication link.

    Parameters
    ----------
    name:
        The agreement's ``cn``; unique per supplier.
    supplier_address:
        Host of the session used for discovery. Agreement objects only
        record the consumer side.
    consumer_address:
        Host the supplier replicates to (``nsDS5ReplicaHost``).
    bind_identity:
        DN the supplier binds as on the consumer (``nsDS5ReplicaBindDN``).
    dn:
        Location of the agreement object on the supplier.
    enabled:
        Whether the agreement is active. Informational only; disabled
        agreements are still rotated.
    consumer_port:
        Consumer port from ``nsDS5ReplicaPort``, or None if not recorded.
    """

    name: str
    supplier_address: str
    consumer_address: str
    bind_identity: str
    dn: str
    enabled: bool = True
    consumer_port: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dictionary."""
        return {
            "name": self.name,
            "supplier_address": self.supplier_address,
            "consumer_address": self.consumer_address,
            "consumer_port": self.consumer_port,
            "bind_identity": self.bind_identity,
            "dn": self.dn,
            "enabled": self.enabled,
        }


def parse_enabled(value: Optional[str]) -> bool:
    """Interpret ``nsds5ReplicaEnabled``.

    389 Directory Server treats an agreement without the attribute as
    enabled, so absence means enabled. ``on`` and ``true`` (any case) mean
    enabled; every other value means disabled.
    """
    if value is None:
        return True
    return value.strip().lower() in _ENABLED_VALUES


def _parse_port(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class AgreementCatalog:
    """Reads replication agreements from a supplier session.

    Parameters
    ----------
    session:
        Bound supplier session. The catalog borrows it and never closes it.
    base_dn:
        Root of the subtree search, usually ``cn=config``.
    """

    def __init__(self, session: DirectorySession, base_dn: str = "cn=config") -> None:
        self._session = session
        self._base_dn = base_dn

    @property
    def supplier_address(self) -> str:
        return self._session.address

    def discover(self) -> list[ReplicationAgreement]:
        """Return all agreements below the base DN in directory order.

        An empty list means there is nothing to rotate; it is not an error.

        Raises
        ------
        DirectoryConnectionError
            If the session is not usable.
        QueryError
            If the search fails.
        """
        logger.info(
            "Searching %s on %s for replication agreements",
            self._base_dn,
            self._session.address,
        )
        entries = self._session.search(
            self._base_dn, AGREEMENT_FILTER, list(AGREEMENT_ATTRIBUTES), Scope.SUBTREE
        )
        agreements = [self._from_entry(entry) for entry in entries]
        logger.info("Found %d replication agreement(s)", len(agreements))
        for agreement in agreements:
            logger.debug(
                "  %s: %s -> %s (enabled=%s)",
                agreement.name,
                agreement.supplier_address,
                agreement.consumer_address,
                agreement.enabled,
            )
        return agreements

    def _from_entry(self, entry: Entry) -> ReplicationAgreement:
        name = entry.first("cn") or entry.dn.split(",", 1)[0].partition("=")[2]
        return ReplicationAgreement(
            name=name,
            supplier_address=self._session.address,
            consumer_address=entry.first("nsDS5ReplicaHost") or "",
            bind_identity=entry.first("nsDS5ReplicaBindDN") or "",
            dn=entry.dn,
            enabled=parse_enabled(entry.first("nsds5ReplicaEnabled")),
            consumer_port=_parse_port(entry.first("nsDS5ReplicaPort")),
        )


__all__ = [
    "AGREEMENT_ATTRIBUTES",
    "AGREEMENT_FILTER",
    "AgreementCatalog",
    "ReplicationAgreement",
    "parse_enabled",
]
