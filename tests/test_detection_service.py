from __future__ import annotations

import threading
import time
import unittest
from datetime import datetime, timezone

import cv2
import numpy as np

from wds.config.models import RuntimeConfig
from wds.detector.backends.base import DetectorBackend
from wds.detector.errors import ModelOutputError
from wds.errors import AlreadyRunning, FetchError, NoReachableEndpoint, NotRunning
from wds.io.ingest.base import FrameSource
from wds.pipeline.service import DetectionService
from wds.types import BoundingBox, Candidate, Frame, ModelState, ServiceState


def _earthy_jpeg() -> bytes:
    image = np.zeros((120, 160, 3), dtype=np.uint8)
    image[:, :] = (40, 90, 130)
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _FakeSource(FrameSource):
    def __init__(self) -> None:
        self.probe_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.payload = _earthy_jpeg()
        self.on_fetch = None
        self.probed: list[str] = []
        self.fetched: list[str] = []
        self.closed = False
        self._frame_id = 0

    def fetch_frame(self, base_url: str) -> Frame:
        self.fetched.append(base_url)
        if self.on_fetch is not None:
            self.on_fetch()
        if self.fetch_error is not None:
            raise self.fetch_error
        self._frame_id += 1
        return Frame(
            data=self.payload,
            source=base_url,
            timestamp=datetime.now(timezone.utc),
            frame_id=self._frame_id,
        )

    def probe(self, base_url: str) -> None:
        self.probed.append(base_url)
        if self.probe_error is not None:
            raise self.probe_error

    def close(self) -> None:
        self.closed = True

    def name(self) -> str:
        return "fake"


class _FakeBackend(DetectorBackend):
    def __init__(self, result=None, delay: float = 0.0) -> None:
        self.result = result
        self.delay = delay

    def load(self, model_spec) -> None:
        pass

    def infer(self, buf, confidence):
        if self.delay:
            time.sleep(self.delay)
        if isinstance(self.result, Exception):
            raise self.result
        return list(self.result or [])

    def warmup(self) -> None:
        pass

    def name(self) -> str:
        return "fake-model"

    def device_info(self) -> str:
        return "cpu"


class _BlockingBackend(_FakeBackend):
    def __init__(self, result) -> None:
        super().__init__(result)
        self.release = threading.Event()
        self.calls = 0

    def infer(self, buf, confidence):
        self.calls += 1
        self.release.wait(5.0)
        return list(self.result)


class _FakeModel:
    def __init__(self, backend: DetectorBackend | None, state: ModelState = ModelState.READY) -> None:
        self._backend = backend
        self._state = state
        self.requests = 0
        self.closed = False

    def ensure_available(self, background: bool = True) -> ModelState:
        self.requests += 1
        return self._state

    def state(self) -> ModelState:
        return self._state

    def error(self):
        return None

    def backend(self):
        return self._backend

    def close(self) -> None:
        self.closed = True


def _config() -> RuntimeConfig:
    config = RuntimeConfig()
    config.camera.url = "http://cam.local"
    config.detection.poll_interval_ms = 60000
    config.detection.max_consecutive_failures = 3
    # Colour alone decides, so a flat earthy frame scores 0.7 every tick.
    config.detection.heuristic.weights = {"color": 1.0}
    config.model.inference_timeout_seconds = 0.2
    return config


class DetectionServiceLifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.source = _FakeSource()
        self.clock = _Clock()
        self.service = DetectionService(_config(), source=self.source, clock=self.clock)

    def tearDown(self) -> None:
        self.service.close()

    def test_start_twice_fails_second_time(self) -> None:
        first = self.service.start()
        second = self.service.start()

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertIsInstance(second.error, AlreadyRunning)
        self.assertEqual(self.service.status().state, ServiceState.RUNNING)
        self.assertEqual(self.source.probed, ["http://cam.local"])

    def test_stop_when_idle_fails(self) -> None:
        result = self.service.stop()

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, NotRunning)
        self.assertEqual(self.service.status().state, ServiceState.IDLE)

    def test_failed_probe_stays_idle(self) -> None:
        self.source.probe_error = FetchError("connection refused")

        result = self.service.start()

        self.assertFalse(result.success)
        self.assertIn("connection refused", result.message)
        status = self.service.status()
        self.assertEqual(status.state, ServiceState.IDLE)
        self.assertEqual(status.last_error, "connection refused")

    def test_start_with_camera_url_updates_settings(self) -> None:
        result = self.service.start(camera_url="http://other.cam/")

        self.assertTrue(result.success)
        self.assertEqual(self.service.settings.camera_url, "http://other.cam")
        self.assertEqual(self.source.probed, ["http://other.cam"])

    def test_stop_then_start_again(self) -> None:
        self.assertTrue(self.service.start().success)
        self.assertTrue(self.service.stop().success)
        self.assertEqual(self.service.status().state, ServiceState.IDLE)
        self.assertTrue(self.service.start().success)
        self.assertEqual(self.service.status().state, ServiceState.RUNNING)

    def test_run_tick_requires_running_service(self) -> None:
        with self.assertRaises(NotRunning):
            self.service.run_tick()


class DetectionServiceTickTests(unittest.TestCase):
    def setUp(self) -> None:
        self.source = _FakeSource()
        self.clock = _Clock()
        self.service = DetectionService(_config(), source=self.source, clock=self.clock)
        self.received: list[list] = []
        self.service.subscribe(self.received.append)
        self.assertTrue(self.service.start().success)

    def tearDown(self) -> None:
        self.service.close()

    def test_tick_publishes_heuristic_detection(self) -> None:
        result = self.service.run_tick()

        self.assertEqual(result.strategy, "heuristic")
        self.assertEqual(len(result.published), 1)
        self.assertEqual(len(self.received), 1)
        detection = self.received[0][0]
        self.assertEqual(detection.label, "animal")
        self.assertAlmostEqual(detection.confidence, 0.7)
        box = detection.bbox
        self.assertLessEqual(box.x + box.width, 1.0)
        self.assertLessEqual(box.y + box.height, 1.0)

        status = self.service.status()
        self.assertEqual(status.ticks_processed, 1)
        self.assertEqual(status.frames_analyzed, 1)
        self.assertEqual(status.last_detection_at, detection.timestamp)
        self.assertEqual(status.subscriber_count, 1)
        self.assertEqual(status.last_strategy, "heuristic")

    def test_cooldown_suppresses_until_window_elapsed(self) -> None:
        self.assertEqual(len(self.service.run_tick().published), 1)

        self.clock.now += 5.0
        suppressed = self.service.run_tick()
        self.assertTrue(suppressed.suppressed)
        self.clock.now += 5.0
        self.assertTrue(self.service.run_tick().suppressed)

        self.clock.now += 0.01
        self.assertEqual(len(self.service.run_tick().published), 1)
        self.assertEqual(len(self.received), 2)
        self.assertEqual(self.service.metrics.snapshot().cooldown_suppressed, 2)

    def test_fetch_failures_keep_running_until_limit(self) -> None:
        self.source.fetch_error = NoReachableEndpoint("all 404")

        for _ in range(2):
            result = self.service.run_tick()
            self.assertEqual(result.published, [])
            self.assertEqual(self.service.status().state, ServiceState.RUNNING)

        self.assertEqual(self.service.status().consecutive_failures, 2)
        self.service.run_tick()

        status = self.service.status()
        self.assertEqual(status.state, ServiceState.ERROR)
        self.assertIn("all 404", status.last_error)
        self.assertEqual(self.received, [])

        self.assertTrue(self.service.stop().success)
        self.assertEqual(self.service.status().state, ServiceState.IDLE)

    def test_successful_fetch_resets_failure_count(self) -> None:
        self.source.fetch_error = NoReachableEndpoint("down")
        self.service.run_tick()
        self.service.run_tick()
        self.source.fetch_error = None
        self.service.run_tick()

        status = self.service.status()
        self.assertEqual(status.consecutive_failures, 0)
        self.assertEqual(status.state, ServiceState.RUNNING)

    def test_corrupt_frame_yields_no_detection(self) -> None:
        self.source.payload = b"\x00" * 2048

        result = self.service.run_tick()

        self.assertEqual(result.published, [])
        self.assertIsNotNone(result.error)
        self.assertEqual(self.service.status().state, ServiceState.RUNNING)
        self.assertEqual(self.service.metrics.snapshot().decode_failures, 1)

    def test_output_discarded_when_stopped_mid_tick(self) -> None:
        self.source.on_fetch = self.service.stop

        result = self.service.run_tick()

        self.assertTrue(result.discarded)
        self.assertEqual(self.received, [])
        self.assertEqual(self.service.status().state, ServiceState.IDLE)

    def test_failing_subscriber_is_isolated(self) -> None:
        def broken(batch):
            raise RuntimeError("subscriber down")

        self.service.subscribe(broken)
        with self.assertLogs("wds.bus", level="ERROR"):
            result = self.service.run_tick()

        self.assertEqual(len(result.published), 1)
        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.service.metrics.snapshot().callback_errors, 1)
        self.assertEqual(self.service.status().state, ServiceState.RUNNING)

    def test_interval_change_restarts_and_resets_cooldown(self) -> None:
        self.assertEqual(len(self.service.run_tick().published), 1)
        self.assertTrue(self.service.run_tick().suppressed)

        updated = self.service.update_settings({"poll_interval_ms": 5000})

        self.assertEqual(updated.poll_interval_ms, 5000)
        status = self.service.status()
        self.assertEqual(status.state, ServiceState.RUNNING)
        self.assertEqual(status.settings["poll_interval_ms"], 5000)
        self.assertEqual(len(self.source.probed), 2)
        self.assertEqual(len(self.service.run_tick().published), 1)

    def test_threshold_change_does_not_restart(self) -> None:
        self.service.update_settings(confidence_threshold=0.8)

        self.assertEqual(len(self.source.probed), 1)
        result = self.service.run_tick()
        self.assertEqual(result.published, [])

    def test_camera_url_change_uses_new_url(self) -> None:
        self.service.update_settings(camera_url="http://new.cam/")
        self.service.run_tick()

        self.assertEqual(self.source.probed[-1], "http://new.cam")
        self.assertEqual(self.source.fetched[-1], "http://new.cam")

    def test_invalid_update_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.service.update_settings(poll_interval_ms=0)
        self.assertEqual(self.service.settings.poll_interval_ms, 60000)

    def test_string_interval_update_keeps_scheduler_ticking(self) -> None:
        updated = self.service.update_settings({"poll_interval_ms": "50"})

        self.assertEqual(updated.poll_interval_ms, 50)
        deadline = time.monotonic() + 3.0
        while self.service.status().ticks_processed == 0 and time.monotonic() < deadline:
            time.sleep(0.02)
        status = self.service.status()
        self.assertGreater(status.ticks_processed, 0)
        self.assertEqual(status.state, ServiceState.RUNNING)


class DetectionServiceModelTests(unittest.TestCase):
    def _service(self, model) -> DetectionService:
        service = DetectionService(_config(), source=_FakeSource(), model=model, clock=_Clock())
        self.addCleanup(service.close)
        return service

    def test_ready_model_is_used(self) -> None:
        candidate = Candidate(
            label="bear",
            confidence=0.9,
            bbox=BoundingBox(0.9, 0.9, 0.3, 0.3),
            class_id=21,
            strategy="model",
        )
        model = _FakeModel(_FakeBackend([candidate]))
        service = self._service(model)
        received: list[list] = []
        service.subscribe(received.append)

        self.assertTrue(service.start().success)
        result = service.run_tick()

        self.assertEqual(model.requests, 1)
        self.assertEqual(result.strategy, "fake-model")
        self.assertEqual(received[0][0].label, "bear")
        self.assertLessEqual(received[0][0].bbox.x + received[0][0].bbox.width, 1.0)
        self.assertEqual(service.status().model_state, ModelState.READY)

    def test_unready_model_falls_back_to_heuristic(self) -> None:
        service = self._service(_FakeModel(None, state=ModelState.DOWNLOADING))
        service.start()

        result = service.run_tick()

        self.assertEqual(result.strategy, "heuristic")
        self.assertEqual(service.status().model_state, ModelState.DOWNLOADING)

    def test_malformed_model_output_is_empty_tick(self) -> None:
        service = self._service(_FakeModel(_FakeBackend(ModelOutputError("bad shape"))))
        service.start()

        result = service.run_tick()

        self.assertEqual(result.published, [])
        self.assertIn("bad shape", result.error)
        self.assertEqual(service.status().state, ServiceState.RUNNING)

    def test_inference_timeout_abandons_tick(self) -> None:
        candidate = Candidate(label="bear", confidence=0.9, bbox=BoundingBox(0.1, 0.1, 0.2, 0.2))
        service = self._service(_FakeModel(_FakeBackend([candidate], delay=1.0)))
        service.start()

        result = service.run_tick()

        self.assertEqual(result.error, "inference timeout")
        self.assertEqual(result.published, [])
        self.assertEqual(service.metrics.snapshot().inference_timeouts, 1)
        self.assertEqual(service.status().state, ServiceState.RUNNING)

    def test_hung_inference_is_not_queued_behind(self) -> None:
        candidate = Candidate(label="bear", confidence=0.9, bbox=BoundingBox(0.1, 0.1, 0.2, 0.2))
        backend = _BlockingBackend([candidate])
        self.addCleanup(backend.release.set)
        service = self._service(_FakeModel(backend))
        service.start()

        results = [service.run_tick() for _ in range(5)]

        self.assertEqual([r.error for r in results], ["inference timeout"] * 5)
        self.assertEqual(backend.calls, 1)
        self.assertEqual(service.metrics.snapshot().inference_timeouts, 5)

        backend.release.set()
        deadline = time.monotonic() + 3.0
        result = service.run_tick()
        while result.error == "inference timeout" and time.monotonic() < deadline:
            time.sleep(0.05)
            result = service.run_tick()

        self.assertEqual(backend.calls, 2)
        self.assertEqual([d.label for d in result.published], ["bear"])


class DetectionServiceCloseTests(unittest.TestCase):
    def test_close_stops_and_releases_resources(self) -> None:
        source = _FakeSource()
        model = _FakeModel(None, state=ModelState.FAILED)
        service = DetectionService(_config(), source=source, model=model)
        service.start()

        service.close()

        self.assertEqual(service.status().state, ServiceState.IDLE)
        self.assertTrue(source.closed)
        self.assertTrue(model.closed)


if __name__ == "__main__":
    unittest.main()
