from __future__ import annotations

import logging
import time
from typing import Callable

from wds.monitoring.metrics import RuntimeMetrics


class PeriodicStatsLogger:
    def __init__(
        self,
        metrics: RuntimeMetrics,
        strategy: Callable[[], str | None],
        interval_seconds: float = 30.0,
    ) -> None:
        self._metrics = metrics
        self._strategy = strategy
        self._interval_seconds = max(0.5, interval_seconds)
        self._next_emit = time.monotonic() + self._interval_seconds
        self._logger = logging.getLogger("wds.stats")

    def maybe_emit(self) -> bool:
        now = time.monotonic()
        if now < self._next_emit:
            return False

        snapshot = self._metrics.snapshot()
        self._logger.info(
            "stats ticks=%d frames=%d fetch_failures=%d decode_failures=%d inference_timeouts=%d candidates=%d published=%d cooldown_suppressed=%d callback_errors=%d last_tick_ms=%.1f strategy=%s",
            snapshot.ticks,
            snapshot.frames_fetched,
            snapshot.fetch_failures,
            snapshot.decode_failures,
            snapshot.inference_timeouts,
            snapshot.candidates,
            snapshot.detections_published,
            snapshot.cooldown_suppressed,
            snapshot.callback_errors,
            snapshot.last_tick_ms,
            self._strategy() or "none",
        )

        self._next_emit = now + self._interval_seconds
        return True
