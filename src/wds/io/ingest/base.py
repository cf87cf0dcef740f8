from __future__ import annotations

from abc import ABC, abstractmethod

from wds.types import Frame


class FrameSource(ABC):
    @abstractmethod
    def fetch_frame(self, base_url: str) -> Frame:
        """Fetch one still frame or raise a FetchError subclass."""

    @abstractmethod
    def probe(self, base_url: str) -> None:
        """Check that the camera answers at all; raise FetchError if not."""

    @abstractmethod
    def close(self) -> None:
        """Release connection resources."""

    @abstractmethod
    def name(self) -> str:
        """Stable source name for logging."""
