from __future__ import annotations

import unittest
from datetime import datetime, timezone

from wds.types import (
    BoundingBox,
    Candidate,
    ControlResult,
    Detection,
    ModelState,
    ServiceState,
    ServiceStatus,
)


class BoundingBoxTests(unittest.TestCase):
    def test_clamped_respects_unit_square(self) -> None:
        for box in (
            BoundingBox(-0.2, -0.3, 0.5, 0.5),
            BoundingBox(0.9, 0.9, 0.5, 0.5),
            BoundingBox(1.4, 0.2, 0.3, -0.1),
        ):
            clamped = box.clamped()
            self.assertGreaterEqual(clamped.x, 0.0)
            self.assertGreaterEqual(clamped.y, 0.0)
            self.assertGreaterEqual(clamped.width, 0.0)
            self.assertGreaterEqual(clamped.height, 0.0)
            self.assertLessEqual(clamped.x2, 1.0 + 1e-9)
            self.assertLessEqual(clamped.y2, 1.0 + 1e-9)

    def test_from_center_normalizes_by_scale(self) -> None:
        box = BoundingBox.from_center(320, 160, 64, 32, scale=640)

        self.assertAlmostEqual(box.x, 0.45)
        self.assertAlmostEqual(box.y, 0.225)
        self.assertAlmostEqual(box.width, 0.1)
        self.assertAlmostEqual(box.height, 0.05)


class DetectionTests(unittest.TestCase):
    def test_from_candidate_copies_fields(self) -> None:
        candidate = Candidate(
            label="bear",
            confidence=0.77,
            bbox=BoundingBox(0.1, 0.1, 0.2, 0.2),
            class_id=21,
            strategy="opencv-onnx",
            extra={"k": 1},
        )
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)

        detection = Detection.from_candidate(candidate, timestamp=ts, frame_id=4)
        candidate.extra["k"] = 2

        self.assertEqual(detection.label, "bear")
        self.assertEqual(detection.timestamp, ts)
        self.assertEqual(detection.frame_id, 4)
        self.assertEqual(detection.extra, {"k": 1})
        self.assertEqual(detection.to_event()["class_id"], 21)


class StatusTests(unittest.TestCase):
    def test_status_to_dict(self) -> None:
        status = ServiceStatus(
            state=ServiceState.RUNNING,
            last_error=None,
            ticks_processed=3,
            frames_analyzed=2,
            consecutive_failures=1,
            last_detection_at=None,
            subscriber_count=2,
            last_strategy="heuristic",
            model_state=ModelState.DOWNLOADING,
            model_error=None,
            settings={"poll_interval_ms": 3000},
        )

        payload = status.to_dict()

        self.assertTrue(status.is_running)
        self.assertEqual(payload["state"], "running")
        self.assertEqual(payload["model_state"], "downloading")
        self.assertEqual(payload["subscriber_count"], 2)

    def test_control_result_hides_exception(self) -> None:
        result = ControlResult(success=False, message="nope", error=RuntimeError("x"))
        self.assertEqual(result.to_dict(), {"success": False, "message": "nope"})


if __name__ == "__main__":
    unittest.main()
