from wds.detector.backends.base import DetectorBackend
from wds.detector.backends.onnx_backend import OnnxDnnBackend, decode_yolo_output

__all__ = ["DetectorBackend", "OnnxDnnBackend", "decode_yolo_output"]
