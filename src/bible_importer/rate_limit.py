"""
Per-source pacing shared by every worker.

Each source has one delay that spaces out its requests. A throttling signal
doubles the delay up to a ceiling; successes halve it back toward the base.
acquire() reserves the next slot under the lock and then waits outside it on
the run's cancel event, so a cancelled run wakes every waiting worker.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_MS = 500
DEFAULT_CEILING_DELAY_MS = 30_000


class ImportCancelled(Exception):
    """Raised when the run is cancelled while a worker waits."""


@dataclass
class SourcePacing:
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    ceiling_delay_ms: int = DEFAULT_CEILING_DELAY_MS


@dataclass
class _SourceState:
    base: float
    ceiling: float
    delay: float
    next_slot: float = 0.0
    throttled: int = 0


class RateLimiter:
    """Single point of truth for each source's request pacing."""

    def __init__(
        self,
        pacing: Optional[dict[str, SourcePacing]] = None,
        default: Optional[SourcePacing] = None,
        clock=time.monotonic,
    ):
        self._pacing = dict(pacing or {})
        self._default = default or SourcePacing()
        self._states: dict[str, _SourceState] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _state(self, source_id: str) -> _SourceState:
        # caller holds the lock
        state = self._states.get(source_id)
        if state is None:
            pacing = self._pacing.get(source_id, self._default)
            base = max(pacing.base_delay_ms, 0) / 1000.0
            ceiling = max(pacing.ceiling_delay_ms / 1000.0, base)
            state = _SourceState(base=base, ceiling=ceiling, delay=base)
            self._states[source_id] = state
        return state

    def acquire(self, source_id: str, cancel_event: Optional[threading.Event] = None):
        """
        Block until the source's next request slot.

        Raises:
            ImportCancelled: if cancel_event is set before or during the wait
        """
        if cancel_event is not None and cancel_event.is_set():
            raise ImportCancelled(f"Cancelled before acquiring {source_id}")

        with self._lock:
            state = self._state(source_id)
            now = self._clock()
            slot = max(now, state.next_slot)
            state.next_slot = slot + state.delay
            wait = slot - now

        if wait <= 0:
            return
        logger.debug(f"[{source_id}] waiting {wait:.2f}s for next slot")
        if cancel_event is None:
            time.sleep(wait)
        elif cancel_event.wait(wait):
            raise ImportCancelled(f"Cancelled while waiting on {source_id}")

    def report_throttled(self, source_id: str) -> float:
        """Double the source's delay (capped) and push its next slot out. Returns the new delay."""
        with self._lock:
            state = self._state(source_id)
            state.delay = min(max(state.delay * 2, state.base, 0.001), state.ceiling)
            state.next_slot = max(state.next_slot, self._clock() + state.delay)
            state.throttled += 1
            delay = state.delay
        logger.warning(f"[{source_id}] throttled, delay now {delay:.2f}s")
        return delay

    def report_success(self, source_id: str) -> float:
        """Decay the source's delay halfway back toward its base. Returns the new delay."""
        with self._lock:
            state = self._state(source_id)
            state.delay = max(state.base, state.delay / 2)
            return state.delay

    def current_delay(self, source_id: str) -> float:
        """Current spacing in seconds."""
        with self._lock:
            return self._state(source_id).delay

    def throttle_count(self, source_id: str) -> int:
        with self._lock:
            return self._state(source_id).throttled
