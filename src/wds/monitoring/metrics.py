from __future__ import annotations

import threading
import time
from dataclasses import dataclass


@dataclass
class MetricsSnapshot:
    uptime_seconds: float
    ticks: int
    frames_fetched: int
    fetch_failures: int
    decode_failures: int
    inference_timeouts: int
    candidates: int
    detections_published: int
    cooldown_suppressed: int
    callback_errors: int
    last_tick_ms: float


class RuntimeMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start = time.monotonic()
        self._ticks = 0
        self._frames_fetched = 0
        self._fetch_failures = 0
        self._decode_failures = 0
        self._inference_timeouts = 0
        self._candidates = 0
        self._detections_published = 0
        self._cooldown_suppressed = 0
        self._callback_errors = 0
        self._last_tick_ms = 0.0

        self._prometheus_started = False
        self._prometheus_counters = None

    def enable_prometheus(self, host: str, port: int) -> bool:
        try:
            from prometheus_client import Counter, Gauge, start_http_server
        except ImportError:
            return False

        if self._prometheus_started:
            return True

        start_http_server(port, addr=host)
        self._prometheus_started = True
        self._prometheus_counters = {
            "ticks": Counter("wds_ticks_total", "Scheduler ticks executed"),
            "frames": Counter("wds_frames_fetched_total", "Frames fetched from the camera"),
            "fetch_failures": Counter("wds_fetch_failures_total", "Ticks without a usable frame"),
            "decode_failures": Counter("wds_decode_failures_total", "Frames that failed to decode"),
            "inference_timeouts": Counter(
                "wds_inference_timeouts_total", "Model inferences abandoned on timeout"
            ),
            "candidates": Counter("wds_candidates_total", "Candidates surviving post-processing"),
            "published": Counter("wds_detections_published_total", "Detections delivered to subscribers"),
            "suppressed": Counter("wds_cooldown_suppressed_total", "Detection batches held back by cooldown"),
            "callback_errors": Counter("wds_callback_errors_total", "Subscriber callbacks that raised"),
            "tick_ms": Gauge("wds_last_tick_ms", "Duration of the last tick in milliseconds"),
        }
        return True

    def _inc(self, key: str, count: int = 1) -> None:
        if self._prometheus_counters:
            self._prometheus_counters[key].inc(count)

    def mark_tick(self, duration_ms: float) -> None:
        with self._lock:
            self._ticks += 1
            self._last_tick_ms = max(0.0, float(duration_ms))
            self._inc("ticks")
            if self._prometheus_counters:
                self._prometheus_counters["tick_ms"].set(self._last_tick_ms)

    def mark_frame(self) -> None:
        with self._lock:
            self._frames_fetched += 1
            self._inc("frames")

    def mark_fetch_failure(self) -> None:
        with self._lock:
            self._fetch_failures += 1
            self._inc("fetch_failures")

    def mark_decode_failure(self) -> None:
        with self._lock:
            self._decode_failures += 1
            self._inc("decode_failures")

    def mark_inference_timeout(self) -> None:
        with self._lock:
            self._inference_timeouts += 1
            self._inc("inference_timeouts")

    def add_candidates(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._candidates += count
            self._inc("candidates", count)

    def add_published(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._detections_published += count
            self._inc("published", count)

    def mark_cooldown_suppressed(self) -> None:
        with self._lock:
            self._cooldown_suppressed += 1
            self._inc("suppressed")

    def add_callback_errors(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._callback_errors += count
            self._inc("callback_errors", count)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                uptime_seconds=max(0.0, time.monotonic() - self._start),
                ticks=self._ticks,
                frames_fetched=self._frames_fetched,
                fetch_failures=self._fetch_failures,
                decode_failures=self._decode_failures,
                inference_timeouts=self._inference_timeouts,
                candidates=self._candidates,
                detections_published=self._detections_published,
                cooldown_suppressed=self._cooldown_suppressed,
                callback_errors=self._callback_errors,
                last_tick_ms=self._last_tick_ms,
            )
