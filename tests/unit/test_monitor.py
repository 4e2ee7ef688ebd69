"""Tests for repl_rotator.monitor — log parsing, tailing and the watcher threads."""
from __future__ import annotations

import datetime
import threading
from pathlib import Path

import pytest

from repl_rotator.monitor import (
    AuthFailureEvent,
    FailureMonitor,
    LogWatcher,
    MonitorState,
    parse_log_line,
    parse_log_timestamp,
)

FAILURE_LINE = (
    "[01/Sep/2025:13:54:42 -0500] - ERR - NSMMReplicationPlugin - bind_and_check_pwp - "
    "err=49 agreement: agreement-to-consumer1 (consumer1:389): Invalid credentials\n"
)
OTHER_LINE = "[01/Sep/2025:13:54:43 -0500] conn=12 op=1 RESULT err=0 tag=97\n"

FIXED_NOW = datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc)


def _append(path: Path, text: str) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(text)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseLogLine:
    def test_failure_line_yields_event(self) -> None:
        event = parse_log_line(FAILURE_LINE, "errors")
        assert event is not None
        assert event.agreement_name == "agreement-to-consumer1"
        assert event.log_source == "errors"
        assert event.severity == "ERROR"
        assert event.source_line == FAILURE_LINE.strip()

    def test_timestamp_parsed_with_offset(self) -> None:
        event = parse_log_line(FAILURE_LINE)
        assert event is not None
        assert event.timestamp == datetime.datetime(
            2025, 9, 1, 18, 54, 42, tzinfo=datetime.timezone.utc
        )

    def test_unrelated_line_ignored(self) -> None:
        assert parse_log_line(OTHER_LINE) is None

    def test_err_49_without_agreement_ignored(self) -> None:
        assert parse_log_line("conn=3 op=0 RESULT err=49 tag=97 nentries=0") is None

    def test_err_490_is_not_49(self) -> None:
        assert parse_log_line("err=490 agreement: a") is None

    def test_name_stops_at_comma(self) -> None:
        event = parse_log_line("err=49 agreement:to-c2, retrying")
        assert event is not None
        assert event.agreement_name == "to-c2"

    def test_unparseable_timestamp_uses_now(self) -> None:
        event = parse_log_line("[garbage] err=49 agreement: a", now=FIXED_NOW)
        assert event is not None
        assert event.timestamp == FIXED_NOW

    def test_missing_timestamp_uses_now(self) -> None:
        event = parse_log_line("err=49 agreement: a", now=FIXED_NOW)
        assert event is not None
        assert event.timestamp == FIXED_NOW


class TestParseLogTimestamp:
    def test_fractional_seconds_dropped(self) -> None:
        stamp = parse_log_timestamp("[01/Sep/2025:13:54:42.123456789 -0500] msg")
        assert stamp is not None
        assert stamp.second == 42
        assert stamp.microsecond == 0

    def test_no_bracket(self) -> None:
        assert parse_log_timestamp("01/Sep/2025:13:54:42 -0500") is None


# ---------------------------------------------------------------------------
# LogWatcher
# ---------------------------------------------------------------------------


class TestLogWatcher:
    def test_missing_file_yields_nothing(self, tmp_path: Path) -> None:
        assert LogWatcher(tmp_path / "absent.log").poll() == []

    def test_each_line_reported_once(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(FAILURE_LINE + OTHER_LINE, encoding="utf-8")
        watcher = LogWatcher(log)
        assert len(watcher.poll()) == 1
        assert watcher.poll() == []
        _append(log, FAILURE_LINE)
        assert len(watcher.poll()) == 1

    def test_partial_line_waits_for_newline(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        head, tail = FAILURE_LINE[:40], FAILURE_LINE[40:]
        log.write_text(head, encoding="utf-8")
        watcher = LogWatcher(log)
        assert watcher.poll() == []
        assert watcher.position == 0
        _append(log, tail)
        events = watcher.poll()
        assert [e.agreement_name for e in events] == ["agreement-to-consumer1"]

    def test_truncation_resets_position(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(OTHER_LINE * 5, encoding="utf-8")
        watcher = LogWatcher(log)
        watcher.poll()
        log.write_text(FAILURE_LINE, encoding="utf-8")
        assert len(watcher.poll()) == 1

    def test_rename_rotation_rereads_new_file(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(OTHER_LINE, encoding="utf-8")
        watcher = LogWatcher(log)
        assert watcher.poll() == []
        # keep the rotated file so its inode cannot be reused
        log.rename(tmp_path / "errors.1")
        log.write_text(FAILURE_LINE * 3, encoding="utf-8")
        assert len(FAILURE_LINE * 3) > watcher.position
        events = watcher.poll()
        assert [e.agreement_name for e in events] == ["agreement-to-consumer1"] * 3
        assert watcher.poll() == []
        assert watcher.position == len((FAILURE_LINE * 3).encode("utf-8"))

    def test_start_at_end_skips_existing_content(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(FAILURE_LINE, encoding="utf-8")
        watcher = LogWatcher(log, start_at_end=True)
        assert watcher.poll() == []
        assert watcher.poll() == []
        _append(log, FAILURE_LINE)
        assert len(watcher.poll()) == 1

    def test_log_source_is_path(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(FAILURE_LINE, encoding="utf-8")
        assert LogWatcher(log).poll()[0].log_source == str(log)


# ---------------------------------------------------------------------------
# FailureMonitor
# ---------------------------------------------------------------------------


class TestFailureMonitor:
    def test_rejects_non_positive_interval(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            FailureMonitor([tmp_path / "x"], lambda e: None, poll_interval=0)

    def test_scan_once_delivers_to_consumer(self, tmp_path: Path) -> None:
        errors, access = tmp_path / "errors", tmp_path / "access"
        errors.write_text(FAILURE_LINE, encoding="utf-8")
        access.write_text(OTHER_LINE, encoding="utf-8")
        received: list[AuthFailureEvent] = []
        monitor = FailureMonitor([errors, access], received.append)
        found = monitor.scan_once()
        assert received == found
        assert len(found) == 1
        assert monitor.scan_once() == []

    def test_history_and_stats(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(FAILURE_LINE * 3, encoding="utf-8")
        monitor = FailureMonitor([log], lambda e: None, history_size=2)
        monitor.scan_once()
        assert len(monitor.history()) == 2
        stats = monitor.stats()
        assert stats["events_detected"] == 3
        assert stats["state"] == "idle"
        assert stats["sources"] == [str(log)]
        assert stats["last_check"] is not None

    def test_consumer_exception_does_not_stop_delivery(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text(FAILURE_LINE * 2, encoding="utf-8")
        calls: list[str] = []

        def consumer(event: AuthFailureEvent) -> None:
            calls.append(event.agreement_name)
            raise RuntimeError("boom")

        FailureMonitor([log], consumer).scan_once()
        assert len(calls) == 2

    def test_threads_deliver_appended_lines(self, tmp_path: Path) -> None:
        log = tmp_path / "errors"
        log.write_text("", encoding="utf-8")
        delivered = threading.Event()
        received: list[AuthFailureEvent] = []

        def consumer(event: AuthFailureEvent) -> None:
            received.append(event)
            delivered.set()

        monitor = FailureMonitor([log], consumer, poll_interval=0.05)
        monitor.start()
        try:
            assert monitor.state in (MonitorState.WATCHING, MonitorState.EMITTING)
            _append(log, FAILURE_LINE)
            assert delivered.wait(5.0)
        finally:
            monitor.stop(timeout=5.0)
        assert monitor.state is MonitorState.STOPPED
        assert [e.agreement_name for e in received] == ["agreement-to-consumer1"]

    def test_start_twice_raises(self, tmp_path: Path) -> None:
        monitor = FailureMonitor([tmp_path / "errors"], lambda e: None, poll_interval=0.05)
        monitor.start()
        try:
            with pytest.raises(RuntimeError):
                monitor.start()
        finally:
            monitor.stop(timeout=5.0)

    def test_wait_returns_after_stop(self, tmp_path: Path) -> None:
        monitor = FailureMonitor([tmp_path / "errors"], lambda e: None, poll_interval=0.05)
        monitor.start()
        assert monitor.wait(0.01) is False
        monitor.stop(timeout=5.0)
        assert monitor.wait(0.01) is True
