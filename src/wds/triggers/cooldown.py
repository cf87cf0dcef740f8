from __future__ import annotations

import threading
import time
from typing import Callable


class CooldownGate:
    """Single rate limit shared by every class and region.

    A batch passes when no batch has passed yet, or when strictly more than
    ``cooldown_ms`` has elapsed since the last one that did.
    """

    def __init__(self, cooldown_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._cooldown_s = max(0, int(cooldown_ms)) / 1000.0
        self._clock = clock
        self._last: float | None = None
        self._lock = threading.Lock()

    @property
    def cooldown_ms(self) -> int:
        return int(round(self._cooldown_s * 1000))

    @property
    def last_fired(self) -> float | None:
        return self._last

    def set_cooldown_ms(self, cooldown_ms: int) -> None:
        with self._lock:
            self._cooldown_s = max(0, int(cooldown_ms)) / 1000.0

    def allow(self, now: float | None = None) -> bool:
        now = self._clock() if now is None else now
        with self._lock:
            if self._last is not None and now - self._last <= self._cooldown_s:
                return False
            self._last = now
            return True

    def remaining_ms(self, now: float | None = None) -> float:
        now = self._clock() if now is None else now
        with self._lock:
            if self._last is None:
                return 0.0
            return max(0.0, (self._last + self._cooldown_s - now) * 1000.0)

    def reset(self) -> None:
        with self._lock:
            self._last = None
