"""Background polling of deployment operations."""

import logging
import threading
from typing import Callable, Optional, Tuple, Type

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

# Errors that only cost one poll; the next tick fetches the full status again
RETRYABLE_POLL_ERRORS: Tuple[Type[Exception], ...] = (ClientError, BotoCoreError)


class PollingTask:
    """
    Calls poll every interval_seconds on a daemon thread.

    poll returns True when polling should stop (the operation converged).
    cancel() prevents future polls; a poll already running completes.

    Args:
        poll: Callable performing one poll
        interval_seconds: Delay between the end of one poll and the next
        name: Thread name, used in log messages
    """

    def __init__(self, poll: Callable[[], bool], interval_seconds: float, name: str = "orgrollout-poller") -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._poll = poll
        self.interval_seconds = interval_seconds
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[Exception] = None
        self.completed = False

    def start(self) -> "PollingTask":
        if self._thread is not None:
            raise RuntimeError(f"Polling task {self.name} was already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                if self._poll():
                    self.completed = True
                    logger.info(f"{self.name}: operation converged, polling stopped")
                    return
            except RETRYABLE_POLL_ERRORS as e:
                logger.warning(f"{self.name}: poll failed, retrying in {self.interval_seconds}s: {e}")
            except Exception as e:
                self.error = e
                logger.error(f"{self.name}: polling aborted: {e}", exc_info=True)
                return
            self._stop.wait(self.interval_seconds)

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def done(self) -> bool:
        return self._thread is not None and not self._thread.is_alive()
