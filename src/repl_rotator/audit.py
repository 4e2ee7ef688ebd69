"""RotationAuditLogger — JSONL audit trail for rotation activity.

Every cycle, per-agreement result and detected authentication failure is
appended as one JSON line to the configured file. Credential values are
never written.

If no file path is configured the logger keeps lines in an in-memory
buffer that can be drained via :meth:`RotationAuditLogger.drain_buffer`.
"""
from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class AuditEvent:
    """A single auditable rotation event.

    Parameters
    ----------
    event_type:
        Short snake_case string (e.g. ``"agreement_rotated"``).
    agreement:
        Agreement name the event concerns, or ``"*"`` for cycle-level events.
    details:
        Arbitrary key-value metadata.
    timestamp:
        UTC datetime of the event. Defaults to now.
    """

    event_type: str
    agreement: str = "*"
    details: dict[str, object] = field(default_factory=dict)
    timestamp: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "agreement": self.agreement,
            "details": self.details,
        }


class RotationAuditLogger:
    """Append-only, thread-safe JSONL audit logger.

    Parameters
    ----------
    log_path:
        JSONL file to append to; parent directories are created. If None,
        lines are buffered in memory.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._buffer: list[str] = []
        self._lock = threading.Lock()

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, event: AuditEvent) -> None:
        line = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        with self._lock:
            if self._log_path is not None:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            else:
                self._buffer.append(line)

    def log_event(self, event_type: str, agreement: str = "*", **details: object) -> None:
        """Log an event without constructing :class:`AuditEvent` by hand."""
        self.log(AuditEvent(event_type=event_type, agreement=agreement, details=dict(details)))

    def drain_buffer(self) -> list[dict[str, object]]:
        """Return and clear buffered events (in-memory mode only)."""
        with self._lock:
            lines, self._buffer = self._buffer, []
        return [json.loads(line) for line in lines]

    def read_events(self) -> list[dict[str, object]]:
        """Read every event from the log file, or the buffer without draining it."""
        with self._lock:
            if self._log_path is None:
                lines = list(self._buffer)
            elif not self._log_path.exists():
                return []
            else:
                lines = self._log_path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]


__all__ = ["AuditEvent", "RotationAuditLogger"]
