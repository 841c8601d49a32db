"""
Tests for orgrollout.polling module.

Tests for the background PollingTask.
"""

import threading
import pytest
from botocore.exceptions import ClientError

from orgrollout.polling import PollingTask


class TestPollingTask:
    """Test PollingTask lifecycle."""

    def test_stops_when_poll_reports_done(self) -> None:
        calls = []

        def poll() -> bool:
            calls.append(1)
            return len(calls) == 3

        task = PollingTask(poll, interval_seconds=0.01).start()
        task.join(timeout=5)

        assert task.done()
        assert task.completed is True
        assert len(calls) == 3

    def test_retryable_errors_skip_one_poll(self) -> None:
        calls = []

        def poll() -> bool:
            calls.append(1)
            if len(calls) == 1:
                raise ClientError({"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "ListStackInstances")
            return True

        task = PollingTask(poll, interval_seconds=0.01).start()
        task.join(timeout=5)

        assert task.completed is True
        assert task.error is None
        assert len(calls) == 2

    def test_unexpected_error_stops_polling(self) -> None:
        def poll() -> bool:
            raise KeyError("boom")

        task = PollingTask(poll, interval_seconds=0.01).start()
        task.join(timeout=5)

        assert task.done()
        assert task.completed is False
        assert isinstance(task.error, KeyError)

    def test_cancel_prevents_future_polls(self) -> None:
        first_poll = threading.Event()
        calls = []

        def poll() -> bool:
            calls.append(1)
            first_poll.set()
            return False

        task = PollingTask(poll, interval_seconds=10).start()
        assert first_poll.wait(timeout=5)
        task.cancel()
        task.join(timeout=5)

        assert task.done()
        assert task.cancelled is True
        assert task.completed is False
        assert len(calls) == 1

    def test_cannot_start_twice(self) -> None:
        task = PollingTask(lambda: True, interval_seconds=0.01).start()
        task.join(timeout=5)

        with pytest.raises(RuntimeError):
            task.start()

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PollingTask(lambda: True, interval_seconds=0)
