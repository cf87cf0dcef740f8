from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np


@dataclass(frozen=True)
class Frame:
    """Raw snapshot bytes as returned by the camera.

    Geometry stays at zero until the frame has been decoded; the tick then
    swaps in a copy carrying the decoded width/height/channels.
    """

    data: bytes
    source: str
    timestamp: datetime
    frame_id: int = 0
    width: int = 0
    height: int = 0
    channels: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class PixelBuffer:
    pixels: np.ndarray
    color: str = "bgr"

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])


@dataclass(frozen=True)
class BoundingBox:
    """Box in coordinates normalized to the unit square."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def clamped(self) -> BoundingBox:
        x = min(1.0, max(0.0, float(self.x)))
        y = min(1.0, max(0.0, float(self.y)))
        width = min(1.0 - x, max(0.0, float(self.width)))
        height = min(1.0 - y, max(0.0, float(self.height)))
        return BoundingBox(x=x, y=y, width=width, height=height)

    def to_dict(self) -> dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_center(
        cls,
        cx: float,
        cy: float,
        w: float,
        h: float,
        scale: float = 1.0,
    ) -> BoundingBox:
        scale = scale if scale > 0 else 1.0
        return cls(
            x=(cx - w / 2.0) / scale,
            y=(cy - h / 2.0) / scale,
            width=w / scale,
            height=h / scale,
        ).clamped()


@dataclass
class Candidate:
    """Unfiltered detection produced by a strategy."""

    label: str
    confidence: float
    bbox: BoundingBox
    class_id: int | None = None
    strategy: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Detection:
    """Candidate that survived thresholding, NMS and cooldown."""

    label: str
    confidence: float
    bbox: BoundingBox
    timestamp: datetime
    frame_id: int = 0
    class_id: int | None = None
    strategy: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_candidate(
        cls,
        candidate: Candidate,
        timestamp: datetime,
        frame_id: int = 0,
    ) -> Detection:
        return cls(
            label=candidate.label,
            confidence=candidate.confidence,
            bbox=candidate.bbox,
            timestamp=timestamp,
            frame_id=frame_id,
            class_id=candidate.class_id,
            strategy=candidate.strategy,
            extra=dict(candidate.extra),
        )

    def to_event(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp.isoformat(),
            "frame_id": self.frame_id,
            "label": self.label,
            "class_id": self.class_id,
            "confidence": round(float(self.confidence), 4),
            "bbox": self.bbox.to_dict(),
            "strategy": self.strategy,
        }


class ServiceState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class ModelState(str, Enum):
    NOT_REQUESTED = "not_requested"
    DOWNLOADING = "downloading"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ServiceStatus:
    state: ServiceState
    last_error: str | None
    ticks_processed: int
    frames_analyzed: int
    consecutive_failures: int
    last_detection_at: datetime | None
    subscriber_count: int
    last_strategy: str | None
    model_state: ModelState
    model_error: str | None
    settings: dict[str, Any]

    @property
    def is_running(self) -> bool:
        return self.state == ServiceState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "last_error": self.last_error,
            "ticks_processed": self.ticks_processed,
            "frames_analyzed": self.frames_analyzed,
            "consecutive_failures": self.consecutive_failures,
            "last_detection_at": (
                self.last_detection_at.isoformat() if self.last_detection_at else None
            ),
            "subscriber_count": self.subscriber_count,
            "last_strategy": self.last_strategy,
            "model_state": self.model_state.value,
            "model_error": self.model_error,
            "settings": dict(self.settings),
        }


@dataclass
class ControlResult:
    success: bool
    message: str
    error: Exception | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}
