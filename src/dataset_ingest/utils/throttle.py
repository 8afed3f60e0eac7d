"""Per-key leading/trailing throttle.

The first call for a key fires immediately; further calls inside the
window are coalesced into a single trailing call at the end of it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable

logger = logging.getLogger(__name__)


class Throttle:
    """Rate-limit ``fn(key)`` to at most one call per *window* seconds per key.

    Parameters
    ----------
    fn:
        Callable invoked with the key.
    window:
        Suppression window in seconds.
    leading:
        Fire on the first call of a window.
    trailing:
        Fire once more at the end of a window that saw suppressed calls.
    """

    def __init__(
        self,
        fn: Callable[[Hashable], None],
        window: float,
        *,
        leading: bool = True,
        trailing: bool = True,
    ) -> None:
        self._fn = fn
        self._window = window
        self._leading = leading
        self._trailing = trailing
        self._lock = threading.Lock()
        self._last_fired: dict[Hashable, float] = {}
        self._pending: dict[Hashable, threading.Timer] = {}

    def __call__(self, key: Hashable) -> None:
        now = time.monotonic()
        fire_now = False
        with self._lock:
            self._prune(now, keep=key)
            last = self._last_fired.get(key)
            if self._leading and (last is None or now - last >= self._window):
                self._last_fired[key] = now
                fire_now = True
            elif self._trailing and key not in self._pending:
                started = last if last is not None else now
                if last is None:
                    self._last_fired[key] = now
                delay = max(self._window - (now - started), 0.0)
                timer = threading.Timer(delay, self._fire_trailing, args=(key,))
                timer.daemon = True
                self._pending[key] = timer
                timer.start()
        if fire_now:
            self._invoke(key)

    def _prune(self, now: float, *, keep: Hashable) -> None:
        """Forget keys whose last fire is a full window old. Caller holds the lock."""
        stale = [
            k for k, fired in self._last_fired.items()
            if k != keep and k not in self._pending and now - fired >= self._window
        ]
        for k in stale:
            del self._last_fired[k]

    def _fire_trailing(self, key: Hashable) -> None:
        with self._lock:
            if self._pending.pop(key, None) is None:
                return
            self._last_fired[key] = time.monotonic()
        self._invoke(key)

    def _invoke(self, key: Hashable) -> None:
        try:
            self._fn(key)
        except Exception:
            logger.exception("Throttled call failed for key %r", key)

    def pending(self) -> list[Hashable]:
        with self._lock:
            return list(self._pending)

    def flush(self) -> None:
        """Run every pending trailing call now."""
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for key, timer in pending:
            timer.cancel()
            self._invoke(key)

    def cancel(self) -> None:
        """Drop pending trailing calls without running them."""
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for timer in pending:
            timer.cancel()
