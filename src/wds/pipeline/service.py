from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Mapping

from wds.config.models import RuntimeConfig, Settings
from wds.detector.backends.base import DetectorBackend
from wds.detector.errors import ModelOutputError
from wds.detector.heuristic import HeuristicDetector
from wds.detector.resource import ModelResource
from wds.detector.selector import select_strategy
from wds.errors import AlreadyRunning, DecodeError, FetchError, NotRunning
from wds.io.ingest import FrameSource, HttpSnapshotSource
from wds.monitoring import PeriodicStatsLogger, RuntimeMetrics
from wds.pipeline.postprocess import postprocess
from wds.pipeline.preprocess import decode
from wds.triggers import CooldownGate, NotificationBus, SubscriptionHandle
from wds.triggers.bus import Subscriber
from wds.types import (
    Candidate,
    ControlResult,
    Detection,
    ModelState,
    PixelBuffer,
    ServiceState,
    ServiceStatus,
)


@dataclass
class _RunContext:
    generation: int
    settings: Settings
    heuristic: HeuristicDetector
    cooldown: CooldownGate
    stop_event: threading.Event = field(default_factory=threading.Event)
    tick_lock: threading.Lock = field(default_factory=threading.Lock)
    consecutive_failures: int = 0
    thread: threading.Thread | None = None


@dataclass
class TickResult:
    generation: int
    frame_id: int | None = None
    strategy: str | None = None
    candidates: list[Candidate] = field(default_factory=list)
    published: list[Detection] = field(default_factory=list)
    suppressed: bool = False
    discarded: bool = False
    error: str | None = None


class DetectionService:
    """Polls a camera, detects animals and fans confirmed detections out to subscribers.

    One scheduler thread runs per start/stop cycle. Every run gets its own
    context (heuristic previous-frame buffer, cooldown gate, failure count),
    so a restart always begins from a clean slate. Output of a tick that
    belongs to an older run is dropped before it reaches the bus.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        source: FrameSource | None = None,
        model: ModelResource | None = None,
        bus: NotificationBus | None = None,
        clock: Callable[[], float] | None = None,
        metrics: RuntimeMetrics | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._settings = Settings.from_config(config)
        self._source = source or HttpSnapshotSource(config.camera)
        self._model = model
        self._bus = bus or NotificationBus()
        self._clock = clock or time.monotonic
        self._metrics = metrics or RuntimeMetrics()
        self._rng = rng
        self._logger = logging.getLogger("wds.service")

        self._lock = threading.RLock()
        self._publish_lock = threading.RLock()
        self._state = ServiceState.IDLE
        self._generation = 0
        self._run: _RunContext | None = None
        self._last_error: str | None = None
        self._ticks_processed = 0
        self._frames_analyzed = 0
        self._consecutive_failures = 0
        self._last_detection_at: datetime | None = None
        self._last_strategy: str | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._inflight: Future | None = None
        self._stats = PeriodicStatsLogger(
            self._metrics,
            strategy=lambda: self._last_strategy,
            interval_seconds=config.monitoring.stats_interval_seconds,
        )

    @property
    def bus(self) -> NotificationBus:
        return self._bus

    @property
    def metrics(self) -> RuntimeMetrics:
        return self._metrics

    @property
    def settings(self) -> Settings:
        with self._lock:
            return self._settings

    def subscribe(self, callback: Subscriber) -> SubscriptionHandle:
        return self._bus.subscribe(callback)

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        return self._bus.unsubscribe(handle)

    def start(self, camera_url: str | None = None) -> ControlResult:
        with self._lock:
            if self._state == ServiceState.RUNNING:
                self._logger.info("start rejected reason=already-running")
                return ControlResult(
                    success=False,
                    message="Detection is already running",
                    error=AlreadyRunning("Detection is already running"),
                )
            if camera_url:
                try:
                    self._settings = self._settings.updated(camera_url=camera_url.rstrip("/"))
                except ValueError as exc:
                    return ControlResult(success=False, message=str(exc), error=exc)
            settings = self._settings

        try:
            self._source.probe(settings.camera_url)
        except FetchError as exc:
            with self._lock:
                self._last_error = str(exc)
            self._logger.warning("start failed url=%s error=%s", settings.camera_url, exc)
            return ControlResult(
                success=False,
                message=f"Failed to connect to camera: {exc}",
                error=exc,
            )

        with self._lock:
            if self._state == ServiceState.RUNNING:
                return ControlResult(
                    success=False,
                    message="Detection is already running",
                    error=AlreadyRunning("Detection is already running"),
                )
            # Settings may have changed while probing.
            ctx = self._launch(self._settings)

        if self._model is not None:
            model_state = self._model.ensure_available(background=True)
            self._logger.info("model requested state=%s", model_state.value)

        self._logger.info(
            "service started generation=%d url=%s interval_ms=%d",
            ctx.generation,
            ctx.settings.camera_url,
            ctx.settings.poll_interval_ms,
        )
        return ControlResult(success=True, message="Detection started successfully")

    def _launch(self, settings: Settings) -> _RunContext:
        self._generation += 1
        ctx = _RunContext(
            generation=self._generation,
            settings=settings,
            heuristic=HeuristicDetector(self._config.detection.heuristic, rng=self._rng),
            cooldown=CooldownGate(settings.cooldown_ms, clock=self._clock),
        )
        ctx.thread = threading.Thread(
            target=self._loop,
            args=(ctx,),
            name="wds-scheduler",
            daemon=True,
        )
        self._run = ctx
        self._state = ServiceState.RUNNING
        self._last_error = None
        self._consecutive_failures = 0
        ctx.thread.start()
        return ctx

    def stop(self) -> ControlResult:
        with self._publish_lock, self._lock:
            if self._state == ServiceState.IDLE:
                self._logger.info("stop rejected reason=not-running")
                return ControlResult(
                    success=False,
                    message="Detection is not running",
                    error=NotRunning("Detection is not running"),
                )
            ctx = self._run
            self._run = None
            self._generation += 1
            self._state = ServiceState.IDLE
            if ctx is not None:
                ctx.stop_event.set()

        self._logger.info("service stopped")
        return ControlResult(success=True, message="Detection stopped successfully")

    def update_settings(self, partial: Mapping[str, Any] | None = None, **changes: Any) -> Settings:
        """Apply a partial settings update.

        Changing the camera URL or poll interval while running restarts the
        run, which also resets the cooldown and the motion reference frame.
        Raises ValueError for unknown keys or invalid values.
        """
        merged = dict(partial or {})
        merged.update(changes)
        if merged.get("camera_url"):
            merged["camera_url"] = str(merged["camera_url"]).rstrip("/")

        with self._lock:
            previous = self._settings
            updated = previous.updated(**merged)
            self._settings = updated
            running = self._state == ServiceState.RUNNING
            ctx = self._run
            if running and ctx is not None and updated.cooldown_ms != previous.cooldown_ms:
                ctx.cooldown.set_cooldown_ms(updated.cooldown_ms)

        self._logger.info("settings updated %s", updated.to_dict())

        restart = running and (
            updated.camera_url != previous.camera_url
            or updated.poll_interval_ms != previous.poll_interval_ms
        )
        if restart:
            self._logger.info("restarting scheduler for new camera/interval settings")
            self.stop()
            result = self.start()
            if not result.success:
                self._logger.warning("restart after settings update failed: %s", result.message)
        return updated

    def status(self) -> ServiceStatus:
        model_state = self._model.state() if self._model is not None else ModelState.NOT_REQUESTED
        model_error = self._model.error() if self._model is not None else None
        with self._lock:
            return ServiceStatus(
                state=self._state,
                last_error=self._last_error,
                ticks_processed=self._ticks_processed,
                frames_analyzed=self._frames_analyzed,
                consecutive_failures=self._consecutive_failures,
                last_detection_at=self._last_detection_at,
                subscriber_count=len(self._bus),
                last_strategy=self._last_strategy,
                model_state=model_state,
                model_error=model_error,
                settings=self._settings.to_dict(),
            )

    def run_tick(self) -> TickResult:
        """Run one tick of the current run synchronously."""
        with self._lock:
            ctx = self._run
        if ctx is None:
            raise NotRunning("Detection is not running")
        return self._tick(ctx)

    def _loop(self, ctx: _RunContext) -> None:
        try:
            interval = float(ctx.settings.poll_interval_ms) / 1000.0
        except (TypeError, ValueError) as exc:
            self._logger.exception("Invalid poll interval generation=%d", ctx.generation)
            self._enter_error(ctx, f"Invalid poll interval: {exc}")
            return
        while not ctx.stop_event.wait(interval):
            try:
                self._tick(ctx)
                self._stats.maybe_emit()
            except Exception:
                self._logger.exception("Unhandled error in detection tick generation=%d", ctx.generation)
        self._logger.debug("scheduler exited generation=%d", ctx.generation)

    def _is_current(self, ctx: _RunContext) -> bool:
        with self._lock:
            return ctx.generation == self._generation and self._state == ServiceState.RUNNING

    def _record_failure(self, ctx: _RunContext, error: Exception) -> None:
        ctx.consecutive_failures += 1
        limit = self._config.detection.max_consecutive_failures
        with self._lock:
            if ctx.generation != self._generation:
                return
            self._consecutive_failures = ctx.consecutive_failures
            self._last_error = str(error)
            if limit and ctx.consecutive_failures >= limit:
                self._enter_error(ctx, str(error))
                self._logger.error(
                    "camera failed %d consecutive ticks; entering error state: %s",
                    ctx.consecutive_failures,
                    error,
                )

    def _enter_error(self, ctx: _RunContext, message: str) -> None:
        with self._lock:
            if ctx.generation != self._generation:
                return
            self._last_error = message
            self._state = ServiceState.ERROR
            self._generation += 1
            self._run = None
            ctx.stop_event.set()

    def _record_success(self, ctx: _RunContext) -> None:
        ctx.consecutive_failures = 0
        with self._lock:
            if ctx.generation == self._generation:
                self._consecutive_failures = 0

    def _inference_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="wds-infer")
            return self._executor

    def _infer(self, backend: DetectorBackend, buf: PixelBuffer, confidence: float) -> list[Candidate]:
        """Run inference on the worker thread, at most one job at a time.

        While an earlier job is still running the frame is skipped with a
        timeout instead of being queued behind it.
        """
        executor = self._inference_executor()
        with self._lock:
            pending = self._inflight
            if pending is not None and not pending.done():
                raise FutureTimeout("previous inference still running")
            future = executor.submit(backend.infer, buf, confidence)
            self._inflight = future
        try:
            return future.result(timeout=self._config.model.inference_timeout_seconds)
        except FutureTimeout:
            future.cancel()
            raise

    def _tick(self, ctx: _RunContext) -> TickResult:
        with ctx.tick_lock:
            started = time.perf_counter()
            result = TickResult(generation=ctx.generation)
            try:
                self._tick_inner(ctx, result)
            finally:
                with self._lock:
                    self._ticks_processed += 1
                self._metrics.mark_tick((time.perf_counter() - started) * 1000.0)
            return result

    def _tick_inner(self, ctx: _RunContext, result: TickResult) -> None:
        settings = self.settings

        try:
            frame = self._source.fetch_frame(ctx.settings.camera_url)
        except FetchError as exc:
            self._metrics.mark_fetch_failure()
            self._logger.info("tick fetch failed generation=%d error=%s", ctx.generation, exc)
            result.error = str(exc)
            self._record_failure(ctx, exc)
            return
        self._metrics.mark_frame()

        try:
            buf = decode(frame.data)
        except DecodeError as exc:
            self._metrics.mark_decode_failure()
            self._logger.info("tick decode failed frame=%d error=%s", frame.frame_id, exc)
            result.error = str(exc)
            self._record_failure(ctx, exc)
            return

        frame = replace(frame, width=buf.width, height=buf.height, channels=buf.channels)
        result.frame_id = frame.frame_id
        self._record_success(ctx)

        selection = select_strategy(self._model, ctx.heuristic)
        result.strategy = selection.name
        with self._lock:
            self._frames_analyzed += 1
            self._last_strategy = selection.name

        try:
            if selection.backend is not None:
                raw = self._infer(selection.backend, buf, settings.confidence_threshold)
            else:
                raw = ctx.heuristic.detect(buf, settings.confidence_threshold)
        except FutureTimeout:
            self._metrics.mark_inference_timeout()
            self._logger.warning(
                "inference timed out frame=%d after %.1fs",
                frame.frame_id,
                self._config.model.inference_timeout_seconds,
            )
            result.error = "inference timeout"
            return
        except ModelOutputError as exc:
            self._logger.warning("model output rejected frame=%d error=%s", frame.frame_id, exc)
            result.error = str(exc)
            return

        candidates = postprocess(raw, settings.confidence_threshold, settings.nms_iou_threshold)
        result.candidates = candidates
        self._metrics.add_candidates(len(candidates))
        self._logger.debug(
            "tick frame=%d %dx%d strategy=%s reason=%s raw=%d kept=%d",
            frame.frame_id,
            frame.width,
            frame.height,
            selection.name,
            selection.reason,
            len(raw),
            len(candidates),
        )
        if not candidates:
            return

        with self._publish_lock:
            if not self._is_current(ctx):
                result.discarded = True
                self._logger.debug("discarding output of stale tick generation=%d", ctx.generation)
                return

            if not ctx.cooldown.allow():
                result.suppressed = True
                self._metrics.mark_cooldown_suppressed()
                self._logger.debug(
                    "detections suppressed by cooldown remaining_ms=%.0f",
                    ctx.cooldown.remaining_ms(),
                )
                return

            detections = [
                Detection.from_candidate(c, timestamp=frame.timestamp, frame_id=frame.frame_id)
                for c in candidates
            ]
            with self._lock:
                self._last_detection_at = frame.timestamp
            self._logger.info(
                "detected frame=%d strategy=%s labels=%s",
                frame.frame_id,
                selection.name,
                ",".join(f"{d.label}:{d.confidence:.2f}" for d in detections),
            )
            published = self._bus.publish(detections)

        result.published = detections
        self._metrics.add_published(len(detections))
        self._metrics.add_callback_errors(published.failed)

    def close(self, timeout: float = 2.0) -> None:
        with self._lock:
            ctx = self._run
            active = self._state != ServiceState.IDLE
        if active:
            self.stop()
        if ctx is not None and ctx.thread is not None and ctx.thread is not threading.current_thread():
            ctx.thread.join(timeout=timeout)
        if self._model is not None:
            self._model.close()
        with self._lock:
            executor = self._executor
            self._executor = None
            self._inflight = None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        self._source.close()
