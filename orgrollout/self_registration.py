"""
Self-registration monitoring.

Accounts that deploy the analysis role on their own announce themselves
with a RegistrationEvent carrying the external ID of an onboarding
session. A watch accepts matching announcements, records them in the
account catalog and ends once an account reports its organization ID, or
at timeout.
"""

import logging
import queue
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set

from .catalog import AccountCatalog
from .enums import RegistrationEventType, RegistrationType
from .types import RegisteredAccount, RegistrationEvent

logger = logging.getLogger(__name__)

RoleValidator = Callable[[RegistrationEvent], bool]

BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
        if value == 0:
            return "".join(reversed(digits))


def generate_external_id(prefix: str) -> str:
    """
    Build a fresh external ID for one onboarding session.

    Args:
        prefix: Product prefix, e.g. "orgrollout"

    Returns:
        "<prefix>-<base36 milliseconds>-<16 random hex chars>"
    """
    timestamp = _base36(int(time.time() * 1000))
    return f"{prefix}-{timestamp}-{secrets.token_hex(8)}"


@dataclass
class WatchResult:
    """How a self-registration watch ended and what it registered."""
    external_id: str
    accounts: List[RegisteredAccount] = field(default_factory=list)
    completed: bool = False
    timed_out: bool = False
    cancelled: bool = False

    @property
    def finished(self) -> bool:
        return self.completed or self.timed_out or self.cancelled


class RegistrationWatch:
    """
    One lazy, finite pass over the registrations of an external ID.

    Iterate it to receive RegisteredAccounts as they are accepted; the
    outcome is on result once iteration ends. A watch cannot be restarted.
    """

    def __init__(self, result: WatchResult, accounts: Iterator[RegisteredAccount], cancel: Callable[[], None]) -> None:
        self.result = result
        self._accounts = accounts
        self._cancel = cancel

    @property
    def external_id(self) -> str:
        return self.result.external_id

    def __iter__(self) -> Iterator[RegisteredAccount]:
        return self._accounts

    def cancel(self) -> None:
        self._cancel()


@dataclass
class _ActiveWatch:
    events: "queue.Queue[Optional[RegistrationEvent]]"
    deadline: float


class SelfRegistrationMonitor:
    """
    Routes announced registration events to the active watch for their external ID.

    Args:
        catalog: Account catalog accepted accounts are upserted into
        role_validator: Optional check that an announced role can be assumed
        clock: Monotonic clock used for timeouts
    """

    def __init__(
        self,
        catalog: AccountCatalog,
        role_validator: Optional[RoleValidator] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.catalog = catalog
        self.role_validator = role_validator
        self.clock = clock
        self._lock = threading.Lock()
        self._active: Dict[str, _ActiveWatch] = {}
        self._used_external_ids: Set[str] = set()

    def announce(self, event: RegistrationEvent) -> bool:
        """
        Deliver an event to the watch for its external ID. Thread-safe.

        Returns:
            False if no active watch uses the event's external ID, or its
            timeout has passed
        """
        with self._lock:
            self._expire_locked()
            active = self._active.get(event.external_id)
        if active is None:
            logger.warning(f"Rejected registration of account {event.account_id}: unknown or expired external ID")
            return False
        active.events.put(event)
        return True

    @property
    def active_external_ids(self) -> List[str]:
        """External IDs of watches that can still receive events."""
        with self._lock:
            self._expire_locked()
            return sorted(self._active)

    def _expire_locked(self) -> None:
        now = self.clock()
        expired = [external_id for external_id, active in self._active.items() if active.deadline <= now]
        for external_id in expired:
            logger.info(f"Self-registration watch {external_id} expired")
            del self._active[external_id]

    def watch(self, external_id: str, timeout: float) -> RegistrationWatch:
        """
        Start watching for registrations carrying external_id.

        Args:
            external_id: External ID handed out for this onboarding session
            timeout: Seconds to wait for a registration carrying an organization ID

        Returns:
            RegistrationWatch to iterate

        Raises:
            ValueError: If external_id is empty or was already watched
        """
        if not external_id:
            raise ValueError("external_id must not be empty")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        events: "queue.Queue[Optional[RegistrationEvent]]" = queue.Queue()
        # The timeout runs from here, not from the first iteration
        deadline = self.clock() + timeout
        with self._lock:
            self._expire_locked()
            if external_id in self._used_external_ids:
                raise ValueError(f"External ID {external_id} has already been watched")
            self._used_external_ids.add(external_id)
            self._active[external_id] = _ActiveWatch(events, deadline)

        result = WatchResult(external_id=external_id)
        cancel_requested = threading.Event()

        def cancel() -> None:
            cancel_requested.set()
            # Wakes a watch blocked on the queue
            events.put(None)

        accounts = self._run(result, events, deadline, cancel_requested)
        return RegistrationWatch(result, accounts, cancel)

    def cancel(self) -> None:
        """Cancel every active watch."""
        with self._lock:
            active = list(self._active.values())
        for watch in active:
            watch.events.put(None)

    def _run(
        self,
        result: WatchResult,
        events: "queue.Queue[Optional[RegistrationEvent]]",
        deadline: float,
        cancel_requested: threading.Event
    ) -> Iterator[RegisteredAccount]:
        seen: Set[str] = set()
        try:
            while True:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    result.timed_out = True
                    logger.info(f"Self-registration watch {result.external_id} timed out")
                    return
                try:
                    event = events.get(timeout=remaining)
                except queue.Empty:
                    continue
                if event is None or cancel_requested.is_set():
                    result.cancelled = True
                    logger.info(f"Self-registration watch {result.external_id} cancelled")
                    return

                account = self._accept(event, result.external_id, seen)
                if account is None:
                    continue
                seen.add(account.account_id)
                result.accounts.append(account)
                yield account

                if account.organization_id:
                    result.completed = True
                    logger.info(
                        f"Self-registration watch {result.external_id} completed: "
                        f"account {account.account_id} reported organization {account.organization_id}"
                    )
                    return
        finally:
            with self._lock:
                self._active.pop(result.external_id, None)

    def _accept(self, event: RegistrationEvent, external_id: str, seen: Set[str]) -> Optional[RegisteredAccount]:
        if event.external_id != external_id:
            logger.warning(f"Rejected registration of account {event.account_id}: external ID mismatch")
            return None
        if event.event_type == RegistrationEventType.HEARTBEAT:
            logger.debug(f"Heartbeat from account {event.account_id}")
            return None
        if event.account_id in seen:
            logger.debug(f"Duplicate registration of account {event.account_id} ignored")
            return None
        if self.role_validator is not None and not self.role_validator(event):
            logger.warning(f"Rejected registration of account {event.account_id}: role cannot be assumed")
            return None

        account = RegisteredAccount(
            account_id=event.account_id,
            role_arn=event.role_arn,
            external_id=event.external_id,
            region=event.region,
            registration_type=RegistrationType.SELF_REGISTERED,
            organization_id=event.organization_id or None,
            display_name=event.account_name,
        )
        self.catalog.upsert(account)
        logger.info(f"Account {account.account_id} self-registered")
        return account
