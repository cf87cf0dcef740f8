from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

import cv2
import numpy as np

from wds.detector.backends.base import DetectorBackend
from wds.detector.errors import ModelLoadError, ModelOutputError
from wds.detector.models.model_spec import ModelSpec
from wds.pipeline.preprocess import to_model_tensor
from wds.types import BoundingBox, Candidate, PixelBuffer

_OUTPUT_KEY_PREFERENCE = ("output0", "output")

LOGGER = logging.getLogger("wds.detector.onnx")


def _select_output(outputs: Mapping[str, Any]) -> Any:
    for key in _OUTPUT_KEY_PREFERENCE:
        if key in outputs and outputs[key] is not None:
            return outputs[key]
    for value in outputs.values():
        if value is not None:
            return value
    raise ModelOutputError("Model produced no usable output tensor")


def decode_yolo_output(
    outputs: Mapping[str, Any],
    labels: Sequence[str],
    confidence: float,
    imgsz: int,
    allowed_ids: Sequence[int] | None = None,
) -> list[Candidate]:
    """Turn flat YOLO-style anchor rows into normalized candidates.

    Each anchor row is ``cx, cy, w, h, objectness, class scores...`` in model
    pixel space. An empty or missing allow-list accepts every class.
    """
    num_classes = len(labels)
    if num_classes == 0:
        raise ModelOutputError("No class labels available to decode model output")

    record = 5 + num_classes
    flat = np.asarray(_select_output(outputs), dtype=np.float32).reshape(-1)
    if flat.size == 0 or flat.size % record != 0:
        raise ModelOutputError(
            f"Output length {flat.size} is not a multiple of anchor record size {record}"
        )

    rows = flat.reshape(-1, record)
    rows = rows[rows[:, 4] >= confidence]
    if rows.size == 0:
        return []

    class_scores = rows[:, 5:]
    class_ids = np.argmax(class_scores, axis=1)
    combined = rows[:, 4] * class_scores[np.arange(len(rows)), class_ids]

    allowed = set(int(i) for i in allowed_ids) if allowed_ids else None
    candidates: list[Candidate] = []
    for row, class_id, score in zip(rows, class_ids.tolist(), combined.tolist()):
        if score < confidence:
            continue
        if allowed is not None and class_id not in allowed:
            continue
        cx, cy, w, h = (float(v) for v in row[:4])
        candidates.append(
            Candidate(
                label=labels[class_id],
                confidence=float(score),
                bbox=BoundingBox.from_center(cx, cy, w, h, scale=float(imgsz)),
                class_id=class_id,
                strategy="model",
            )
        )
    return candidates


class OnnxDnnBackend(DetectorBackend):
    def __init__(self, device: str = "cpu") -> None:
        self._device = device
        self._net: Any | None = None
        self._model_spec: ModelSpec | None = None
        self._labels: list[str] = []
        self._output_names: list[str] = []

    def load(self, model_spec: ModelSpec) -> None:
        if not model_spec.model_path:
            raise ModelLoadError("ONNX backend requires model.path")
        model_path = Path(model_spec.model_path)
        if not model_path.exists():
            raise ModelLoadError(f"Model file missing: {model_path}")

        try:
            net = cv2.dnn.readNetFromONNX(str(model_path))
        except cv2.error as exc:
            raise ModelLoadError(f"Unable to read ONNX model {model_path}: {exc}") from exc

        if self._device == "cuda":
            net.setPreferableBackend(cv2.dnn.DNN_BACKEND_CUDA)
            net.setPreferableTarget(cv2.dnn.DNN_TARGET_CUDA)
        elif self._device == "opencl":
            net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
            net.setPreferableTarget(cv2.dnn.DNN_TARGET_OPENCL)
        else:
            net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
            net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)

        self._net = net
        self._output_names = list(net.getUnconnectedOutLayersNames())
        self._model_spec = model_spec
        self._labels = model_spec.read_labels()
        LOGGER.info(
            "Loaded ONNX model path=%s outputs=%s labels=%d device=%s",
            model_path,
            ",".join(self._output_names),
            len(self._labels),
            self._device,
        )

    def forward(self, buf: PixelBuffer) -> dict[str, Any]:
        if self._net is None or self._model_spec is None:
            raise RuntimeError("Backend not loaded")
        self._net.setInput(to_model_tensor(buf, self._model_spec.imgsz))
        results = self._net.forward(self._output_names)
        if isinstance(results, np.ndarray):
            results = [results]
        return dict(zip(self._output_names, results))

    def infer(self, buf: PixelBuffer, confidence: float) -> list[Candidate]:
        outputs = self.forward(buf)
        if self._model_spec is None:
            raise RuntimeError("Backend not loaded")
        return decode_yolo_output(
            outputs,
            self._labels,
            confidence,
            self._model_spec.imgsz,
            self._model_spec.animal_class_ids,
        )

    def warmup(self) -> None:
        if self._net is None or self._model_spec is None:
            return
        size = self._model_spec.imgsz
        self.forward(PixelBuffer(pixels=np.zeros((size, size, 3), dtype=np.uint8)))

    def name(self) -> str:
        return "opencv-onnx"

    def device_info(self) -> str:
        return self._device
