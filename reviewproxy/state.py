"""Thread-safe tracking of review stacks and their idle timers."""

from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional

DIGEST_CHECK_INTERVAL = 5 * 60.0
NOT_FOUND_RECHECK_INTERVAL = 60.0


class StackStatus(Enum):
    """Lifecycle stage of a review stack."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    RUNNING = "running"
    NOT_FOUND = "not_found"
    STOPPING = "stopping"


@dataclass
class StackState:
    """Snapshot of one stack; timestamps are ``time.monotonic`` values."""

    status: StackStatus = StackStatus.UNKNOWN
    digest: str = ""
    last_digest_check: float = float("-inf")
    last_request: float = float("-inf")
    idle_timer: Optional[threading.Timer] = dataclasses.field(
        default=None, compare=False, repr=False
    )

    def cancel_timer(self) -> None:
        if self.idle_timer is not None:
            self.idle_timer.cancel()


class StateManager:
    """Holds the state of every known stack and fires ``on_idle`` after inactivity."""

    def __init__(
        self,
        idle_timeout: timedelta | float,
        on_idle: Optional[Callable[[str], None]] = None,
    ) -> None:
        if isinstance(idle_timeout, timedelta):
            idle_timeout = idle_timeout.total_seconds()
        self.idle_timeout = float(idle_timeout)
        self.on_idle = on_idle
        self._lock = threading.Lock()
        self._stacks: dict[str, StackState] = {}

    def state_of(self, subdomain: str) -> StackState:
        """Return a copy of the state of ``subdomain``."""
        with self._lock:
            return dataclasses.replace(self._stacks.get(subdomain, StackState()))

    def _replace(self, subdomain: str, state: StackState) -> None:
        old = self._stacks.get(subdomain)
        if old is not None:
            old.cancel_timer()
        self._stacks[subdomain] = state

    def mark_starting(self, subdomain: str) -> None:
        with self._lock:
            self._replace(
                subdomain, StackState(StackStatus.STARTING, last_request=time.monotonic())
            )

    def mark_running(self, subdomain: str, digest: str) -> None:
        with self._lock:
            state = self._stacks.setdefault(subdomain, StackState())
            state.status = StackStatus.RUNNING
            state.digest = digest
            state.last_digest_check = state.last_request = time.monotonic()
            self._reset_timer(subdomain, state)

    def mark_not_found(self, subdomain: str) -> None:
        with self._lock:
            self._replace(
                subdomain, StackState(StackStatus.NOT_FOUND, last_digest_check=time.monotonic())
            )

    def mark_stopping(self, subdomain: str) -> None:
        with self._lock:
            state = self._stacks.get(subdomain)
            if state is not None:
                state.status = StackStatus.STOPPING
                state.cancel_timer()

    def remove(self, subdomain: str) -> None:
        with self._lock:
            state = self._stacks.pop(subdomain, None)
            if state is not None:
                state.cancel_timer()

    def touch(self, subdomain: str) -> None:
        """Record a request and restart the idle timer of a known stack."""
        with self._lock:
            state = self._stacks.get(subdomain)
            if state is not None:
                state.last_request = time.monotonic()
                self._reset_timer(subdomain, state)

    def _stale(self, subdomain: str, status: StackStatus, interval: float) -> bool:
        with self._lock:
            state = self._stacks.get(subdomain)
            if state is None or state.status is not status:
                return False
            return time.monotonic() - state.last_digest_check > interval

    def needs_digest_check(self, subdomain: str) -> bool:
        return self._stale(subdomain, StackStatus.RUNNING, DIGEST_CHECK_INTERVAL)

    def update_digest(self, subdomain: str, digest: str) -> None:
        with self._lock:
            state = self._stacks.get(subdomain)
            if state is not None:
                state.digest = digest
                state.last_digest_check = time.monotonic()

    def needs_not_found_recheck(self, subdomain: str) -> bool:
        return self._stale(subdomain, StackStatus.NOT_FOUND, NOT_FOUND_RECHECK_INTERVAL)

    def _reset_timer(self, subdomain: str, state: StackState) -> None:
        state.cancel_timer()
        state.idle_timer = threading.Timer(self.idle_timeout, self._fire_idle, args=(subdomain,))
        state.idle_timer.daemon = True
        state.idle_timer.start()

    def _fire_idle(self, subdomain: str) -> None:
        if self.on_idle is not None:
            self.on_idle(subdomain)