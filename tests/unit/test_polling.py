"""Tests for bounded polling."""

import threading
import time

import pytest

from cluster_provisioner.polling import Deadline, poll


def test_poll_returns_first_value():
    answers = iter([None, None, "203.0.113.5"])

    result = poll(lambda: next(answers), 0.001, Deadline(5))

    assert result == "203.0.113.5"


def test_poll_returns_none_on_expiry():
    calls = []

    def check():
        calls.append(1)
        return None

    assert poll(check, 0.01, Deadline(0.05)) is None
    assert len(calls) >= 1


def test_poll_propagates_check_errors():
    def check():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        poll(check, 0.01, Deadline(1))


def test_open_ended_deadline_has_no_remaining_time():
    deadline = Deadline(None)

    assert deadline.remaining() is None
    assert not deadline.expired()


def test_cancel_expires_deadline():
    event = threading.Event()
    deadline = Deadline(None, cancel_event=event)

    event.set()

    assert deadline.cancelled
    assert deadline.expired()
    assert deadline.sleep(10) is False


def test_sleep_is_bounded_by_deadline():
    deadline = Deadline(0.05)

    started = time.monotonic()
    deadline.sleep(5)

    assert time.monotonic() - started < 2
    assert deadline.expired()


def test_cancel_wakes_a_sleeping_poll():
    event = threading.Event()
    timer = threading.Timer(0.05, event.set)
    timer.start()
    try:
        started = time.monotonic()
        assert poll(lambda: None, 10, Deadline(None, cancel_event=event)) is None
        assert time.monotonic() - started < 5
    finally:
        timer.cancel()
