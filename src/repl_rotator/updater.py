"""DualSidedUpdater — write one agreement's credential on both servers.

Ordering invariant
------------------
The supplier-side write (``nsds5ReplicaCredentials`` on the agreement
object) always happens before the consumer-side write (``userPassword`` on
the consumer's replication manager entry). If the supplier write fails the
consumer is never contacted. If the supplier write succeeds and the consumer
write fails, the agreement is left *partial* and the manual commands needed
to reconcile it are reported; it is not retried.

Preview mode walks the same decision sequence with the same targets and
values and only skips the writes themselves.
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from repl_rotator.catalog import ReplicationAgreement
from repl_rotator.directory.base import Connector, DirectorySession
from repl_rotator.errors import DirectoryConnectionError, ModifyError

logger = logging.getLogger(__name__)

SUPPLIER_ATTRIBUTE = "nsds5ReplicaCredentials"
CONSUMER_ATTRIBUTE = "userPassword"
DEFAULT_MANAGER_DN = "cn=replication manager,cn=config"


class ExecutionMode(str, Enum):
    """How a rotation cycle treats writes."""

    EXECUTE = "execute"
    PREVIEW = "preview"


class Side(str, Enum):
    """Which end of an agreement a write targets."""

    SUPPLIER = "supplier"
    CONSUMER = "consumer"


class WriteStatus(str, Enum):
    """Result of one side's write."""

    APPLIED = "applied"
    PREVIEWED = "previewed"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


@dataclass(frozen=True)
class WriteTarget:
    """Where one side's credential is written."""

    side: Side
    server: str
    dn: str
    attribute: str
    port: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "side": self.side.value,
            "server": self.server,
            "port": self.port,
            "dn": self.dn,
            "attribute": self.attribute,
        }


def derive_target(
    agreement: ReplicationAgreement,
    side: Side,
    manager_dn: str = DEFAULT_MANAGER_DN,
) -> WriteTarget:
    """Compute the write target for *side* of *agreement*.

    Depends only on its arguments. Both execute and preview mode, and the
    manual command renderer, go through this function.
    """
    if side is Side.SUPPLIER:
        return WriteTarget(
            side=side,
            server=agreement.supplier_address,
            dn=agreement.dn,
            attribute=SUPPLIER_ATTRIBUTE,
        )
    return WriteTarget(
        side=side,
        server=agreement.consumer_address,
        dn=manager_dn,
        attribute=CONSUMER_ATTRIBUTE,
        port=agreement.consumer_port,
    )


def _is_safe_string(value: str) -> bool:
    """RFC 2849 SAFE-STRING: printable ASCII with no leading space, colon or '<'."""
    if not value:
        return True
    if value[0] in " :<" or value[-1] == " ":
        return False
    return all(0x20 <= ord(ch) < 0x7F for ch in value)


def ldif_attribute_line(attribute: str, value: str) -> str:
    """``attr: value``, or ``attr:: <base64>`` when *value* is not LDIF-safe."""
    if _is_safe_string(value):
        return f"{attribute}: {value}"
    encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    return f"{attribute}:: {encoded}"


def render_ldif(target: WriteTarget, value: str) -> str:
    """LDIF change record replacing the target attribute with *value*."""
    return (
        f"dn: {target.dn}\n"
        "changetype: modify\n"
        f"replace: {target.attribute}\n"
        f"{ldif_attribute_line(target.attribute, value)}\n"
    )


def render_modify_command(
    target: WriteTarget,
    value: str,
    bind_dn: str,
    default_port: int = 389,
) -> str:
    """Shell command that applies the change by hand with ``ldapmodify``.

    The heredoc delimiter is quoted so the shell passes the LDIF through
    without expanding ``$``, backticks or backslashes in the value.
    """
    port = target.port or default_port
    return (
        f'ldapmodify -x -D "{bind_dn}" -W -H ldap://{target.server}:{port} << \'EOF\'\n'
        f"{render_ldif(target, value)}"
        "EOF"
    )


@dataclass(frozen=True)
class UpdateOutcome:
    """What happened to one side of one agreement.

    Parameters
    ----------
    agreement_name:
        The agreement this outcome belongs to.
    side:
        Supplier or consumer.
    target:
        Where the value was, or would have been, written.
    status:
        Applied, previewed, failed, or not attempted.
    error:
        Failure description; empty on success.
    value:
        The credential written or proposed. Treat as sensitive.
    """

    agreement_name: str
    side: Side
    target: WriteTarget
    status: WriteStatus
    error: str = ""
    value: str = field(default="", repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status in (WriteStatus.APPLIED, WriteStatus.PREVIEWED)

    @property
    def attempted(self) -> bool:
        return self.status is not WriteStatus.NOT_ATTEMPTED

    def describe(self) -> str:
        """One-line human description."""
        location = f"{self.target.attribute} on {self.target.dn} at {self.target.server}"
        if self.status is WriteStatus.PREVIEWED:
            return f"would write new credential to {location}"
        if self.status is WriteStatus.APPLIED:
            return f"wrote new credential to {location}"
        if self.status is WriteStatus.NOT_ATTEMPTED:
            return f"skipped {location}: {self.error}"
        return f"failed to write {location}: {self.error}"

    def to_dict(self, include_value: bool = False) -> dict[str, object]:
        return {
            "agreement_name": self.agreement_name,
            "side": self.side.value,
            "target": self.target.to_dict(),
            "status": self.status.value,
            "succeeded": self.succeeded,
            "error": self.error,
            "value": self.value if include_value else "***",
        }


class DualSidedUpdater:
    """Applies or previews the two writes of a credential rotation.

    Parameters
    ----------
    supplier_session:
        Bound session to the supplier. Borrowed, never closed here.
    connect_consumer:
        Opens a session to a consumer host. Sessions it returns are closed
        after each consumer write.
    manager_dn:
        DN of the replication manager entry on consumers.
    bind_dn:
        Administrative DN shown in manual ``ldapmodify`` commands.
    default_port:
        Port used in manual commands when the agreement records none.
    """

    def __init__(
        self,
        supplier_session: DirectorySession,
        connect_consumer: Connector,
        manager_dn: str = DEFAULT_MANAGER_DN,
        bind_dn: str = "cn=Directory Manager",
        default_port: int = 389,
    ) -> None:
        self._supplier = supplier_session
        self._connect_consumer = connect_consumer
        self._manager_dn = manager_dn
        self._bind_dn = bind_dn
        self._default_port = default_port

    def plan(self, agreement: ReplicationAgreement) -> tuple[WriteTarget, WriteTarget]:
        """Return the (supplier, consumer) targets for *agreement*."""
        return (
            derive_target(agreement, Side.SUPPLIER, self._manager_dn),
            derive_target(agreement, Side.CONSUMER, self._manager_dn),
        )

    def commands(self, agreement: ReplicationAgreement, value: str) -> list[str]:
        """Manual ``ldapmodify`` commands, supplier first."""
        return [
            render_modify_command(target, value, self._bind_dn, self._default_port)
            for target in self.plan(agreement)
        ]

    def apply(
        self,
        agreement: ReplicationAgreement,
        value: str,
        mode: ExecutionMode,
    ) -> tuple[UpdateOutcome, UpdateOutcome]:
        """Rotate *agreement* to *value*.

        Returns
        -------
        tuple[UpdateOutcome, UpdateOutcome]
            Supplier outcome, then consumer outcome.
        """
        supplier_target, consumer_target = self.plan(agreement)

        supplier = self._write(agreement, supplier_target, value, mode)
        if not supplier.succeeded:
            logger.error(
                "Supplier write for %s failed; consumer %s left untouched",
                agreement.name,
                consumer_target.server,
            )
            consumer = UpdateOutcome(
                agreement_name=agreement.name,
                side=Side.CONSUMER,
                target=consumer_target,
                status=WriteStatus.NOT_ATTEMPTED,
                error=f"supplier write failed: {supplier.error}",
                value=value,
            )
            return supplier, consumer

        consumer = self._write(agreement, consumer_target, value, mode)
        if not consumer.succeeded:
            logger.critical(
                "Agreement %s is inconsistent: supplier %s updated but consumer %s "
                "was not (%s). Reconcile manually.",
                agreement.name,
                supplier_target.server,
                consumer_target.server,
                consumer.error,
            )
        return supplier, consumer

    def _write(
        self,
        agreement: ReplicationAgreement,
        target: WriteTarget,
        value: str,
        mode: ExecutionMode,
    ) -> UpdateOutcome:
        if mode is ExecutionMode.PREVIEW:
            logger.info(
                "[preview] Would replace %s on %s at %s for %s",
                target.attribute,
                target.dn,
                target.server,
                agreement.name,
            )
            return UpdateOutcome(
                agreement.name, target.side, target, WriteStatus.PREVIEWED, value=value
            )

        logger.info(
            "Replacing %s on %s at %s for %s",
            target.attribute,
            target.dn,
            target.server,
            agreement.name,
        )
        try:
            if target.side is Side.SUPPLIER:
                self._supplier.modify(target.dn, target.attribute, value)
            else:
                with self._connect_consumer(target.server, target.port) as session:
                    session.modify(target.dn, target.attribute, value)
        except (ModifyError, DirectoryConnectionError) as exc:
            return UpdateOutcome(
                agreement.name,
                target.side,
                target,
                WriteStatus.FAILED,
                error=str(exc),
                value=value,
            )
        return UpdateOutcome(agreement.name, target.side, target, WriteStatus.APPLIED, value=value)


__all__ = [
    "CONSUMER_ATTRIBUTE",
    "DEFAULT_MANAGER_DN",
    "SUPPLIER_ATTRIBUTE",
    "DualSidedUpdater",
    "ExecutionMode",
    "Side",
    "UpdateOutcome",
    "WriteStatus",
    "WriteTarget",
    "derive_target",
    "ldif_attribute_line",
    "render_ldif",
    "render_modify_command",
]
