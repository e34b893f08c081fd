"""
Per-model rate limiting for Switchboard.

Keeps each model under its provider's per-minute quota using a fixed
window. Windows reset lazily: the first check after the window has
elapsed starts a new one.
"""

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Optional


WINDOW_SECONDS = 60.0


@dataclass
class RateLimitWindow:
    """Usage of one model within the current window."""
    limit: int
    current: int = 0
    reset_time: float = 0.0


class RateLimitExceededError(Exception):
    """Raised when every candidate model is over its quota."""

    def __init__(self, models: Iterable[str]):
        self.models = list(models)
        super().__init__(
            f"Rate limit exceeded for all candidate models: {', '.join(self.models) or 'none'}"
        )


class RateLimiter:
    """
    Fixed-window quota tracker keyed by model id.

    ``allow`` answers whether another call fits in the current window and
    ``record`` counts one. Neither blocks.
    """

    def __init__(
        self,
        limits: dict[str, int],
        default_limit: int = 60,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rate limiter.

        Args:
            limits: Per-model quota per window.
            default_limit: Quota for models not listed in ``limits``.
            window_seconds: Window length.
            clock: Time source in epoch seconds.
        """
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = Lock()
        self._limits = dict(limits)
        self._windows: dict[str, RateLimitWindow] = {}

    def _window(self, model_id: str, now: float) -> RateLimitWindow:
        window = self._windows.get(model_id)
        if window is None:
            window = RateLimitWindow(
                limit=self._limits.get(model_id, self.default_limit),
                reset_time=now + self.window_seconds,
            )
            self._windows[model_id] = window
        elif now >= window.reset_time:
            window.current = 0
            window.reset_time = now + self.window_seconds
        return window

    def allow(self, model_id: str) -> bool:
        """True when another call to ``model_id`` fits in its window."""
        with self._lock:
            window = self._window(model_id, self._clock())
            return window.current < window.limit

    def record(self, model_id: str) -> None:
        """Count one accepted call against ``model_id``."""
        with self._lock:
            self._window(model_id, self._clock()).current += 1

    def check_and_record(self, model_id: str) -> None:
        """
        Check the quota and count the call in one step.

        Raises:
            RateLimitExceededError: If the window is already full.
        """
        with self._lock:
            window = self._window(model_id, self._clock())
            if window.current >= window.limit:
                raise RateLimitExceededError([model_id])
            window.current += 1

    def available(self, model_ids: Iterable[str]) -> list[str]:
        """Subset of ``model_ids`` still under quota, order preserved."""
        return [m for m in model_ids if self.allow(m)]

    def set_limit(self, model_id: str, limit: int) -> None:
        if limit < 0:
            raise ValueError("limit must be non-negative")
        with self._lock:
            self._limits[model_id] = limit
            if model_id in self._windows:
                self._windows[model_id].limit = limit

    def get_stats(self, model_id: Optional[str] = None) -> dict:
        """
        Current usage per model.

        Args:
            model_id: Restrict to one model, or None for every tracked model.
        """
        with self._lock:
            now = self._clock()
            ids = [model_id] if model_id else sorted(set(self._limits) | set(self._windows))
            stats = {}
            for mid in ids:
                window = self._window(mid, now)
                stats[mid] = {
                    "limit": window.limit,
                    "current": window.current,
                    "remaining": max(0, window.limit - window.current),
                    "resets_in_s": max(0.0, window.reset_time - now),
                }
            return stats

    def reset(self, model_id: Optional[str] = None) -> None:
        """
        Clear usage for one model or all models.

        Args:
            model_id: Model to reset, or None for all models
        """
        with self._lock:
            if model_id:
                self._windows.pop(model_id, None)
            else:
                self._windows.clear()
