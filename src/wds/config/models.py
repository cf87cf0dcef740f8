from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any

COCO_ANIMAL_CLASS_IDS = [15, 16, 17, 18, 19, 20, 21, 22, 23]

DEFAULT_MODEL_URL = "https://github.com/ultralytics/yolov5/releases/download/v7.0/yolov5s.onnx"


@dataclass
class CameraConfig:
    url: str = "http://127.0.0.1:8080"
    fetch_timeout_seconds: float = 8.0
    probe_timeout_seconds: float = 5.0
    min_frame_bytes: int = 1000
    user_agent: str = "wds-detection/1.0"


@dataclass
class ModelConfig:
    name: str = "yolov5s"
    path: str | None = "models/yolov5s.onnx"
    labels_path: str | None = None
    device: str = "auto"
    imgsz: int = 640
    animal_class_ids: list[int] = field(default_factory=lambda: list(COCO_ANIMAL_CLASS_IDS))
    auto_download: bool = True
    download_url: str = DEFAULT_MODEL_URL
    download_timeout_seconds: float = 300.0
    download_delay_seconds: float = 5.0
    inference_timeout_seconds: float = 10.0


@dataclass
class HeuristicConfig:
    motion_pixel_delta: int = 30
    motion_size: list[int] = field(default_factory=lambda: [320, 240])
    edge_threshold: int = 100
    complex_shape_score: float = 0.3
    texture_divisor: float = 1000.0
    weights: dict[str, float] = field(
        default_factory=lambda: {
            "motion": 0.40,
            "shape": 0.25,
            "color": 0.20,
            "texture": 0.15,
        }
    )


@dataclass
class DetectionConfig:
    poll_interval_ms: int = 3000
    confidence: float = 0.6
    nms: float = 0.4
    cooldown_ms: int = 10000
    max_consecutive_failures: int = 5
    heuristic: HeuristicConfig = field(default_factory=HeuristicConfig)


@dataclass
class MonitoringConfig:
    json_logs: bool = False
    log_level: str = "INFO"
    stats_interval_seconds: float = 30.0
    prometheus_enabled: bool = False
    prometheus_host: str = "0.0.0.0"
    prometheus_port: int = 9108
    event_stdout: bool = True
    event_file: str | None = None


@dataclass
class RuntimeConfig:
    camera: CameraConfig = field(default_factory=CameraConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def as_log_context(self) -> dict[str, Any]:
        return {
            "camera_url": self.camera.url,
            "poll_interval_ms": self.detection.poll_interval_ms,
            "confidence": self.detection.confidence,
            "nms": self.detection.nms,
            "cooldown_ms": self.detection.cooldown_ms,
            "model": self.model.name,
            "model_path": self.model.path,
            "auto_download": self.model.auto_download,
            "json_logs": self.monitoring.json_logs,
        }


@dataclass(frozen=True)
class Settings:
    """Runtime knobs that may change while the service is running."""

    camera_url: str
    poll_interval_ms: int
    confidence_threshold: float
    nms_iou_threshold: float
    cooldown_ms: int

    def __post_init__(self) -> None:
        # Stored coerced; updates may carry strings.
        object.__setattr__(self, "camera_url", str(self.camera_url or "").strip())
        for name, kind in (
            ("poll_interval_ms", int),
            ("cooldown_ms", int),
            ("confidence_threshold", float),
            ("nms_iou_threshold", float),
        ):
            raw = getattr(self, name)
            try:
                object.__setattr__(self, name, kind(raw))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name} must be a number, got {raw!r}") from exc

        if not self.camera_url:
            raise ValueError("camera_url must not be empty")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        if self.cooldown_ms < 0:
            raise ValueError("cooldown_ms must not be negative")
        for name in ("confidence_threshold", "nms_iou_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> Settings:
        return cls(
            camera_url=config.camera.url,
            poll_interval_ms=int(config.detection.poll_interval_ms),
            confidence_threshold=float(config.detection.confidence),
            nms_iou_threshold=float(config.detection.nms),
            cooldown_ms=int(config.detection.cooldown_ms),
        )

    def updated(self, **partial: Any) -> Settings:
        unknown = set(partial) - set(self.to_dict())
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        changes = {key: value for key, value in partial.items() if value is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
