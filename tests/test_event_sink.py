from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from wds.io.output.events import JsonEventSink
from wds.types import BoundingBox, Detection


class JsonEventSinkTests(unittest.TestCase):
    def test_enabled_false_when_no_stdout_and_no_file(self) -> None:
        sink = JsonEventSink(stdout_enabled=False, file_path=None)
        try:
            self.assertFalse(sink.enabled())
        finally:
            sink.close()

    def test_enabled_true_when_stdout_enabled(self) -> None:
        sink = JsonEventSink(stdout_enabled=True, file_path=None)
        try:
            self.assertTrue(sink.enabled())
        finally:
            sink.close()

    def test_detections_are_written_as_json_lines(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "events" / "events.jsonl"
            sink = JsonEventSink(stdout_enabled=False, file_path=str(output_path))
            sink.open()
            try:
                sink(
                    [
                        Detection(
                            label="dog",
                            confidence=0.912345,
                            bbox=BoundingBox(0.1, 0.2, 0.3, 0.4),
                            timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
                            frame_id=7,
                            class_id=16,
                            strategy="opencv-onnx",
                        )
                    ]
                )
            finally:
                sink.close()

            lines = output_path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 1)
            event = json.loads(lines[0])
            self.assertEqual(event["label"], "dog")
            self.assertEqual(event["frame_id"], 7)
            self.assertEqual(event["confidence"], 0.9123)
            self.assertEqual(event["bbox"], {"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.4})
            self.assertEqual(event["ts"], "2024-05-01T00:00:00+00:00")


if __name__ == "__main__":
    unittest.main()
