"""Failure monitor — watch directory server logs for replication bind failures.

Each configured log file gets its own watcher thread that polls at a fixed
interval and reads only bytes appended since its last poll. A line is an
authentication failure when it carries ``err=49`` followed by an agreement
name; every such line becomes exactly one :class:`AuthFailureEvent` handed
to the registered consumer.

States: ``idle -> watching -> emitting -> watching``; ``stopped`` after
:meth:`FailureMonitor.stop`.
"""
from __future__ import annotations

import datetime
import logging
import os
import re
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

AUTH_FAILURE_PATTERN = re.compile(r"err=49\b.*?agreement[:\s]+([^\s,]+)")
_TIMESTAMP_PATTERN = re.compile(r"^\s*\[([^\]]+)\]")
_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.\d+")
LOG_TIMESTAMP_FORMAT = "%d/%b/%Y:%H:%M:%S %z"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class AuthFailureEvent:
    """An authentication failure detected in a log line."""

    timestamp: datetime.datetime
    agreement_name: str
    source_line: str
    log_source: str
    severity: str = "ERROR"

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "agreement_name": self.agreement_name,
            "source_line": self.source_line,
            "log_source": self.log_source,
            "severity": self.severity,
        }


def parse_log_timestamp(line: str) -> Optional[datetime.datetime]:
    """Parse the leading ``[01/Sep/2025:13:54:42 -0500]`` stamp, if any.

    Sub-second precision (``13:54:42.123456789``) is dropped.
    """
    match = _TIMESTAMP_PATTERN.match(line)
    if match is None:
        return None
    raw = _FRACTION.sub(r"\1", match.group(1).strip())
    try:
        return datetime.datetime.strptime(raw, LOG_TIMESTAMP_FORMAT)
    except ValueError:
        return None


def parse_log_line(
    line: str,
    log_source: str = "",
    now: Optional[datetime.datetime] = None,
) -> Optional[AuthFailureEvent]:
    """Return an event for an authentication-failure line, else None.

    A line with an unparseable timestamp still yields an event, stamped
    with *now* (defaults to the current UTC time).
    """
    match = AUTH_FAILURE_PATTERN.search(line)
    if match is None:
        return None
    timestamp = parse_log_timestamp(line) or now or _utcnow()
    return AuthFailureEvent(
        timestamp=timestamp,
        agreement_name=match.group(1),
        source_line=line.strip(),
        log_source=log_source,
    )


class LogWatcher:
    """Tracks a read position in one log file.

    Only complete lines are consumed; a trailing partial line is re-read on
    the next poll once its newline arrives. When the file shrinks (rotation
    or truncation) the position resets to zero.

    Parameters
    ----------
    path:
        Log file to follow.
    encoding:
        Text encoding of the file.
    start_at_end:
        Skip existing content on the first poll.
    """

    def __init__(self, path: str | Path, encoding: str = "utf-8", start_at_end: bool = False) -> None:
        self._path = Path(path)
        self._encoding = encoding
        self._position = 0
        self._inode: Optional[int] = None
        self._primed = not start_at_end

    @property
    def path(self) -> Path:
        return self._path

    @property
    def position(self) -> int:
        return self._position

    def poll(self, now: Optional[datetime.datetime] = None) -> list[AuthFailureEvent]:
        """Scan newly appended lines and return their events."""
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            logger.debug("Log source %s does not exist yet", self._path)
            return []

        if not self._primed:
            self._position = stat.st_size
            self._inode = stat.st_ino
            self._primed = True
            return []

        if stat.st_size < self._position or (
            self._inode is not None and stat.st_ino != self._inode
        ):
            logger.info("Log source %s was rotated or truncated; rereading from start", self._path)
            self._position = 0
        self._inode = stat.st_ino

        if stat.st_size == self._position:
            return []

        with self._path.open("rb") as fh:
            fh.seek(self._position)
            chunk = fh.read(stat.st_size - self._position)

        end = chunk.rfind(b"\n")
        if end < 0:
            return []
        complete = chunk[: end + 1]
        self._position += len(complete)

        events: list[AuthFailureEvent] = []
        source = os.fspath(self._path)
        for raw in complete.decode(self._encoding, errors="replace").splitlines():
            event = parse_log_line(raw, source, now)
            if event is not None:
                events.append(event)
        return events


class MonitorState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    EMITTING = "emitting"
    STOPPED = "stopped"


EventConsumer = Callable[[AuthFailureEvent], object]


class FailureMonitor:
    """Runs one polling thread per log source and forwards detected events.

    Parameters
    ----------
    paths:
        Log files to watch.
    consumer:
        Called once per event, from the watcher thread that found it.
        Exceptions it raises are logged and do not stop the watcher.
    poll_interval:
        Seconds between polls of each source.
    encoding:
        Text encoding of the log files.
    start_at_end:
        Ignore content present before :meth:`start`.
    history_size:
        Number of recent events retained for :meth:`history`.
    """

    def __init__(
        self,
        paths: Iterable[str | Path],
        consumer: EventConsumer,
        poll_interval: float = 5.0,
        encoding: str = "utf-8",
        start_at_end: bool = False,
        history_size: int = 100,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._watchers = [LogWatcher(p, encoding, start_at_end) for p in paths]
        self._consumer = consumer
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._state = MonitorState.IDLE
        self._emitting = 0
        self._history: deque[AuthFailureEvent] = deque(maxlen=history_size)
        self._events_detected = 0
        self._last_check: Optional[datetime.datetime] = None

    @property
    def state(self) -> MonitorState:
        with self._lock:
            return self._state

    @property
    def sources(self) -> list[str]:
        return [os.fspath(w.path) for w in self._watchers]

    def start(self) -> None:
        """Start one watcher thread per source."""
        with self._lock:
            if self._state is not MonitorState.IDLE:
                raise RuntimeError(f"Cannot start monitor in state {self._state.value!r}")
            self._state = MonitorState.WATCHING
        logger.info("Monitoring %d log source(s) for authentication failures", len(self._watchers))
        for watcher in self._watchers:
            thread = threading.Thread(
                target=self._watch,
                args=(watcher,),
                name=f"log-watcher:{watcher.path.name}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
            logger.info("  Watching: %s", watcher.path)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop all watchers and wait for their threads to exit."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        with self._lock:
            self._state = MonitorState.STOPPED
        logger.info("Failure monitor stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until :meth:`stop` is called; returns True once stopped."""
        return self._stop_event.wait(timeout)

    def scan_once(self) -> list[AuthFailureEvent]:
        """Poll every source once on the calling thread and emit the results."""
        found: list[AuthFailureEvent] = []
        for watcher in self._watchers:
            found.extend(self._poll(watcher))
        return found

    def history(self) -> list[AuthFailureEvent]:
        """Recent events, oldest first."""
        with self._lock:
            return list(self._history)

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "state": self._state.value,
                "sources": self.sources,
                "events_detected": self._events_detected,
                "last_check": self._last_check.isoformat() if self._last_check else None,
                "poll_interval": self._poll_interval,
            }

    def _watch(self, watcher: LogWatcher) -> None:
        while not self._stop_event.is_set():
            try:
                self._poll(watcher)
            except OSError as exc:
                logger.error("Error reading log source %s: %s", watcher.path, exc)
            self._stop_event.wait(self._poll_interval)

    def _poll(self, watcher: LogWatcher) -> list[AuthFailureEvent]:
        events = watcher.poll()
        with self._lock:
            self._last_check = _utcnow()
        for event in events:
            if self._stop_event.is_set():
                break
            self._emit(event)
        return events

    def _emit(self, event: AuthFailureEvent) -> None:
        with self._lock:
            self._history.append(event)
            self._events_detected += 1
            self._emitting += 1
            if self._state is MonitorState.WATCHING:
                self._state = MonitorState.EMITTING
        logger.warning(
            "Detected authentication failure (err=49) for agreement %r in %s",
            event.agreement_name,
            event.log_source,
        )
        try:
            self._consumer(event)
        except Exception:
            logger.exception("Event consumer failed for agreement %r", event.agreement_name)
        finally:
            with self._lock:
                self._emitting -= 1
                if self._emitting == 0 and self._state is MonitorState.EMITTING:
                    self._state = MonitorState.WATCHING


__all__ = [
    "AUTH_FAILURE_PATTERN",
    "AuthFailureEvent",
    "EventConsumer",
    "FailureMonitor",
    "LogWatcher",
    "MonitorState",
    "parse_log_line",
    "parse_log_timestamp",
]
