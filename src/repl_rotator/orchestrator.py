"""RotationOrchestrator — run a credential rotation cycle.

One cycle is: discover agreements (unless given), resolve credentials,
apply the dual-sided update to each agreement in turn, and return a
:class:`CycleReport`. A failing agreement never stops the ones after it;
only connection and discovery errors abort a cycle.
"""
from __future__ import annotations

import datetime
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from repl_rotator.audit import RotationAuditLogger
from repl_rotator.catalog import AgreementCatalog, ReplicationAgreement
from repl_rotator.errors import PartialInconsistency
from repl_rotator.monitor import AuthFailureEvent
from repl_rotator.passwords import CredentialAssignment, CredentialResolver
from repl_rotator.updater import DualSidedUpdater, ExecutionMode, UpdateOutcome

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AgreementStatus(str, Enum):
    """Aggregate result for one agreement."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    UNRESOLVED = "unresolved"


class CycleStatus(str, Enum):
    """Whether a cycle processed anything."""

    COMPLETED = "completed"
    NO_OP = "no_op"


@dataclass(frozen=True)
class AgreementResult:
    """Outcome of rotating one agreement.

    Parameters
    ----------
    agreement:
        The agreement processed.
    status:
        Succeeded, partial, failed, or unresolved.
    outcomes:
        Supplier and consumer outcomes; empty when unresolved.
    error:
        Root cause for anything but success.
    remediation:
        Manual ``ldapmodify`` commands for partial results. Contains the
        new credential, so it is never serialised.
    """

    agreement: ReplicationAgreement
    status: AgreementStatus
    outcomes: tuple[UpdateOutcome, ...] = ()
    error: str = ""
    remediation: tuple[str, ...] = field(default=(), repr=False)

    @property
    def name(self) -> str:
        return self.agreement.name

    def as_exception(self) -> Optional[PartialInconsistency]:
        """The partial state as an exception, for callers that escalate it."""
        if self.status is not AgreementStatus.PARTIAL:
            return None
        return PartialInconsistency(self.name, self.error, list(self.remediation))

    def to_dict(self) -> dict[str, object]:
        return {
            "agreement": self.agreement.to_dict(),
            "status": self.status.value,
            "error": self.error,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass
class CycleReport:
    """Everything that happened in one cycle."""

    mode: ExecutionMode
    status: CycleStatus
    results: list[AgreementResult] = field(default_factory=list)
    trigger: str = "manual"
    started_at: datetime.datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime.datetime] = None
    note: str = ""

    def counts(self) -> dict[str, int]:
        totals = {status.value: 0 for status in AgreementStatus}
        for result in self.results:
            totals[result.status.value] += 1
        return totals

    @property
    def ok(self) -> bool:
        """True when every agreement succeeded on both sides."""
        return self.status is CycleStatus.COMPLETED and all(
            r.status is AgreementStatus.SUCCEEDED for r in self.results
        )

    def by_status(self, status: AgreementStatus) -> list[AgreementResult]:
        return [r for r in self.results if r.status is status]

    def to_dict(self) -> dict[str, object]:
        return {
            "mode": self.mode.value,
            "status": self.status.value,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "note": self.note,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
        }


def _classify(supplier: UpdateOutcome, consumer: UpdateOutcome) -> tuple[AgreementStatus, str]:
    if not supplier.succeeded:
        return AgreementStatus.FAILED, supplier.error
    if not consumer.succeeded:
        return AgreementStatus.PARTIAL, consumer.error
    return AgreementStatus.SUCCEEDED, ""


class RotationOrchestrator:
    """Sequences catalog, resolver and updater across agreements.

    Cycles are serialised: a cycle started while another is running waits,
    so a monitor-triggered rotation never interleaves writes with a manual
    one on the shared session.

    Parameters
    ----------
    catalog:
        Used when :meth:`run_cycle` is not given agreements.
    resolver:
        Supplies new credentials.
    updater:
        Performs or previews the writes.
    audit:
        Optional audit trail.
    """

    def __init__(
        self,
        catalog: AgreementCatalog,
        resolver: CredentialResolver,
        updater: DualSidedUpdater,
        audit: Optional[RotationAuditLogger] = None,
    ) -> None:
        self._catalog = catalog
        self._resolver = resolver
        self._updater = updater
        self._audit = audit
        self._lock = threading.Lock()

    def run_cycle(
        self,
        agreements: Optional[Sequence[ReplicationAgreement]] = None,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
        only: Optional[str] = None,
        trigger: str = "manual",
        assignment: Optional[CredentialAssignment] = None,
    ) -> CycleReport:
        """Run one rotation cycle.

        Parameters
        ----------
        agreements:
            Agreements to rotate. Discovered from the catalog when None.
        mode:
            Execute or preview.
        only:
            Restrict the cycle to the agreement with this name.
        trigger:
            Free-form label recorded in the report (``"manual"``,
            ``"auth_failure"``...).
        assignment:
            Credentials resolved ahead of time, e.g. to show a plan before
            executing it. Resolved from the policy when None; agreements
            missing from it are reported unresolved.

        Raises
        ------
        DirectoryConnectionError, QueryError
            If discovery fails. Nothing is written in that case.
        """
        with self._lock:
            return self._run(agreements, mode, only, trigger, assignment)

    def handle_event(
        self,
        event: AuthFailureEvent,
        mode: ExecutionMode = ExecutionMode.EXECUTE,
    ) -> CycleReport:
        """Rotate only the agreement named by an authentication failure."""
        logger.warning(
            "Authentication failure for %s in %s; starting scoped rotation",
            event.agreement_name,
            event.log_source,
        )
        if self._audit is not None:
            self._audit.log_event(
                "auth_failure_detected",
                agreement=event.agreement_name,
                log_source=event.log_source,
                detected_at=event.timestamp.isoformat(),
            )
        return self.run_cycle(mode=mode, only=event.agreement_name, trigger="auth_failure")

    def _run(
        self,
        agreements: Optional[Sequence[ReplicationAgreement]],
        mode: ExecutionMode,
        only: Optional[str],
        trigger: str,
        assignment: Optional[CredentialAssignment],
    ) -> CycleReport:
        report = CycleReport(mode=mode, status=CycleStatus.COMPLETED, trigger=trigger)
        selected = list(agreements) if agreements is not None else self._catalog.discover()
        if only is not None:
            selected = [a for a in selected if a.name == only]

        if not selected:
            report.status = CycleStatus.NO_OP
            report.note = (
                f"no agreement named {only!r}" if only is not None else "no agreements found"
            )
            report.finished_at = _utcnow()
            logger.warning("Nothing to rotate: %s", report.note)
            self._log("cycle_noop", mode=mode.value, trigger=trigger, note=report.note)
            return report

        self._log("cycle_started", mode=mode.value, trigger=trigger, agreements=len(selected))
        if assignment is None:
            assignment = self._resolver.resolve(selected)

        for agreement in selected:
            resolved = assignment.get(agreement.name)
            if resolved is None or resolved.value is None:
                reason = resolved.reason if resolved is not None else "no credential in assignment"
                result = AgreementResult(
                    agreement, AgreementStatus.UNRESOLVED, error=reason
                )
                report.results.append(result)
                self._log("agreement_unresolved", agreement.name, reason=reason)
                continue

            supplier, consumer = self._updater.apply(agreement, resolved.value, mode)
            status, error = _classify(supplier, consumer)
            remediation: tuple[str, ...] = ()
            if status is AgreementStatus.PARTIAL:
                remediation = tuple(self._updater.commands(agreement, resolved.value))
            report.results.append(
                AgreementResult(agreement, status, (supplier, consumer), error, remediation)
            )
            self._log_result(agreement, status, mode, error)

        report.finished_at = _utcnow()
        counts = report.counts()
        logger.info(
            "Cycle finished (%s): %d succeeded, %d partial, %d failed, %d unresolved",
            mode.value,
            counts["succeeded"],
            counts["partial"],
            counts["failed"],
            counts["unresolved"],
        )
        self._log("cycle_finished", mode=mode.value, trigger=trigger, **counts)
        return report

    def _log_result(
        self,
        agreement: ReplicationAgreement,
        status: AgreementStatus,
        mode: ExecutionMode,
        error: str,
    ) -> None:
        if status is AgreementStatus.SUCCEEDED:
            event_type = (
                "agreement_previewed" if mode is ExecutionMode.PREVIEW else "agreement_rotated"
            )
        else:
            event_type = f"agreement_{status.value}"
        self._log(
            event_type,
            agreement.name,
            supplier=agreement.supplier_address,
            consumer=agreement.consumer_address,
            error=error,
        )

    def _log(self, event_type: str, agreement: str = "*", **details: object) -> None:
        if self._audit is not None:
            self._audit.log_event(event_type, agreement=agreement, **details)


__all__ = [
    "AgreementResult",
    "AgreementStatus",
    "CycleReport",
    "CycleStatus",
    "RotationOrchestrator",
]
