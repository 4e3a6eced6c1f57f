from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import pytest

from lumina.config import SecretRedactingFilter, redact
from lumina.errors import InvalidTransitionError
from lumina.services.activity import ActivityLog, AppStatus, StatusTracker


def test_status_follows_submission_lifecycle() -> None:
    tracker = StatusTracker()
    seen: list[tuple[str, str]] = []
    tracker.subscribe(lambda previous, current: seen.append((previous.value, current.value)))

    tracker.transition(AppStatus.CONFIGURING)
    tracker.transition(AppStatus.PROCESSING)
    tracker.transition(AppStatus.ERROR)
    tracker.transition(AppStatus.PROCESSING)
    tracker.transition(AppStatus.COMPLETED)

    assert seen == [
        ("IDLE", "CONFIGURING"),
        ("CONFIGURING", "PROCESSING"),
        ("PROCESSING", "ERROR"),
        ("ERROR", "PROCESSING"),
        ("PROCESSING", "COMPLETED"),
    ]


@pytest.mark.parametrize(
    "path",
    [
        [AppStatus.COMPLETED],
        [AppStatus.PROCESSING, AppStatus.IDLE],
        [AppStatus.PROCESSING, AppStatus.CONFIGURING],
        [AppStatus.PROCESSING, AppStatus.COMPLETED, AppStatus.ERROR],
    ],
)
def test_status_never_moves_backward(path: list[AppStatus]) -> None:
    tracker = StatusTracker()
    *allowed, rejected = path
    for status in allowed:
        tracker.transition(status)

    with pytest.raises(InvalidTransitionError):
        tracker.transition(rejected)


def test_reset_returns_to_idle_and_unsubscribe_stops_notifications() -> None:
    tracker = StatusTracker(AppStatus.ERROR)
    seen: list[AppStatus] = []
    unsubscribe = tracker.subscribe(lambda previous, current: seen.append(current))

    tracker.reset()
    unsubscribe()
    tracker.transition(AppStatus.PROCESSING)

    assert tracker.status == AppStatus.PROCESSING
    assert seen == [AppStatus.IDLE]


def test_log_is_newest_first_and_marks_critical_entries() -> None:
    log = ActivityLog(clock=lambda: datetime(2025, 1, 1, 9, 30, 5))

    log.append("Initializing Lumina Engine...")
    log.critical("System Error: boom")

    entries = log.entries()
    assert [e.message for e in entries] == ["System Error: boom", "Initializing Lumina Engine..."]
    assert entries[0].critical is True
    assert entries[1].critical is False
    assert entries[0].timestamp == "09:30:05"


def test_log_bound_drops_oldest_entries() -> None:
    log = ActivityLog(max_entries=2)
    for i in range(4):
        log.append(f"entry {i}")

    assert [e.message for e in log.entries()] == ["entry 3", "entry 2"]
    assert len(log) == 2


def test_log_subscribers_receive_entries_and_clear_events() -> None:
    log = ActivityLog()
    received: list[Optional[str]] = []
    log.subscribe(lambda entry: received.append(entry.message if entry is not None else None))

    log.append("Photo uploaded successfully.")
    log.clear()

    assert received == ["Photo uploaded successfully.", None]
    assert log.entries() == []


def test_redact_strips_key_query_parameter() -> None:
    url = "https://host/v1beta/files/abc:download?alt=media&key=AIzaSECRET"

    assert redact(url) == "https://host/v1beta/files/abc:download?alt=media&key=***"
    assert redact("token AIzaSECRET leaked", "AIzaSECRET") == "token *** leaked"


def test_redacting_filter_rewrites_log_records() -> None:
    record = logging.LogRecord(
        name="httpx",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="HTTP Request: GET %s",
        args=("https://host/file?alt=media&key=AIzaSECRET",),
        exc_info=None,
    )

    assert SecretRedactingFilter("AIzaSECRET").filter(record) is True
    assert "AIzaSECRET" not in record.getMessage()
