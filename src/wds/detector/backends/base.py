from __future__ import annotations

from abc import ABC, abstractmethod

from wds.detector.models.model_spec import ModelSpec
from wds.types import Candidate, PixelBuffer


class DetectorBackend(ABC):
    @abstractmethod
    def load(self, model_spec: ModelSpec) -> None:
        """Load model artifacts and initialize backend."""

    @abstractmethod
    def infer(self, buf: PixelBuffer, confidence: float) -> list[Candidate]:
        """Run inference on a single decoded frame."""

    @abstractmethod
    def warmup(self) -> None:
        """Run one-time warmup inference if supported."""

    @abstractmethod
    def name(self) -> str:
        """Return stable backend name for logging and metrics."""

    @abstractmethod
    def device_info(self) -> str:
        """Return selected device/accelerator detail string."""
