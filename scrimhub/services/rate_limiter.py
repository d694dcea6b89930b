import threading
import time
from collections import deque


class SlidingWindowRateLimiter:
    """Per-key sliding window counter held in memory by the app container."""

    _PRUNE_INTERVAL_SECONDS = 300

    def __init__(self, max_events, window_seconds, clock=time.monotonic):
        self.max_events = int(max_events or 0)
        self.window_seconds = float(window_seconds or 0)
        self._clock = clock
        self._lock = threading.Lock()
        self._events = {}
        self._last_prune = clock()

    @property
    def enabled(self):
        return self.max_events > 0 and self.window_seconds > 0

    def hit(self, key):
        """Record one event for ``key``.

        Returns ``None`` when allowed, otherwise the whole seconds to wait.
        """
        if not self.enabled:
            return None

        now = self._clock()
        with self._lock:
            self._prune(now)
            events = self._events.setdefault(str(key), deque())
            while events and events[0] <= now - self.window_seconds:
                events.popleft()
            if len(events) >= self.max_events:
                return max(1, int(events[0] + self.window_seconds - now + 0.999))
            events.append(now)
            return None

    def reset(self, key=None):
        with self._lock:
            if key is None:
                self._events.clear()
            else:
                self._events.pop(str(key), None)

    def _prune(self, now):
        if now - self._last_prune < self._PRUNE_INTERVAL_SECONDS:
            return
        self._last_prune = now
        cutoff = now - self.window_seconds
        for key in [k for k, events in self._events.items() if not events or events[-1] <= cutoff]:
            del self._events[key]
