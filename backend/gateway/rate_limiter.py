"""
Per-provider fixed-window rate limiter.

Each provider gets a counter that resets at fixed window boundaries. Budget is
consumed only by successful dispatches: ``allow`` reserves a slot, ``record``
turns the reservation into consumption and ``release`` hands it back. The
reservation is what keeps two concurrent callers from both being admitted for
the last slot of a window.

A reservation belongs to the window that admitted it. When that window
expires, its outstanding reservations stop holding slots in the next one.
Settling such a reservation later never frees a slot it does not hold; a
record still counts as a request made in the current window.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

from gateway.schemas import RateLimit, RateLimitState

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window admission control keyed by provider name.

    Usage:
        limiter = RateLimiter({"openai": RateLimit(max_requests=50, window_ms=60000)})

        if limiter.allow("openai"):
            try:
                result = await client.generate_body_model(...)
            except ProviderError:
                limiter.release("openai")
            else:
                limiter.record("openai")
    """

    def __init__(
        self,
        limits: Optional[Dict[str, RateLimit]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            limits: provider name -> window budget. Providers missing here are
                never limited.
            clock: monotonic seconds source (injectable for tests)
        """
        self._limits: Dict[str, RateLimit] = dict(limits or {})
        self._states: Dict[str, RateLimitState] = {}
        # reservations admitted by an expired window, not yet settled
        self._stale: Dict[str, int] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def allow(self, provider: str) -> bool:
        """Admit one attempt for ``provider`` and reserve a slot for it."""
        limit = self._limits.get(provider)
        if limit is None:
            return True

        with self._lock:
            now = self._clock()
            state = self._states.get(provider)

            if state is None or now > state.reset_time:
                if state is not None and state.pending:
                    self._stale[provider] = self._stale.get(provider, 0) + state.pending
                state = RateLimitState(count=0, reset_time=now + limit.window_ms / 1000.0)
                self._states[provider] = state

            if state.count + state.pending >= limit.max_requests:
                logger.info(
                    f"[RateLimiter] {provider} denied "
                    f"({state.count} used, {state.pending} in flight, max {limit.max_requests})"
                )
                return False

            state.pending += 1
            return True

    def record(self, provider: str) -> None:
        """Consume budget for a successful dispatch previously admitted by ``allow``."""
        if provider not in self._limits:
            return
        with self._lock:
            state = self._states.get(provider)
            if state is None:
                return
            if not self._settle_stale(provider) and state.pending > 0:
                state.pending -= 1
            state.count += 1

    def release(self, provider: str) -> None:
        """Return an admitted slot without consuming budget (the attempt failed)."""
        if provider not in self._limits:
            return
        with self._lock:
            state = self._states.get(provider)
            if state is None:
                return
            if not self._settle_stale(provider) and state.pending > 0:
                state.pending -= 1

    def _settle_stale(self, provider: str) -> bool:
        """Settle the oldest reservation first; True if it came from an expired window."""
        stale = self._stale.get(provider, 0)
        if not stale:
            return False
        self._stale[provider] = stale - 1
        return True

    def snapshot(self, provider: str) -> Optional[RateLimitState]:
        """Copy of the current window state, or None if never checked / unlimited."""
        with self._lock:
            state = self._states.get(provider)
            return state.model_copy() if state is not None else None

    def is_limited(self, provider: str) -> bool:
        return provider in self._limits
