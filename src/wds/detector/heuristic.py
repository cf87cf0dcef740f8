from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass

import cv2
import numpy as np

from wds.config.models import HeuristicConfig
from wds.pipeline.preprocess import channel_stats, motion_thumbnail, normalize_contrast
from wds.types import BoundingBox, Candidate, PixelBuffer

_EDGE_KERNEL = np.array(
    [
        [-1.0, -1.0, -1.0],
        [-1.0, 8.0, -1.0],
        [-1.0, -1.0, -1.0],
    ],
    dtype=np.float32,
)

# Patch centres on the motion thumbnail, 5x5 windows.
_TEXTURE_GRID = range(10, 200, 20)
_PATCH_RADIUS = 2


@dataclass
class HeuristicScores:
    motion: float = 0.0
    shape: float = 0.0
    color: float = 0.0
    texture: float = 0.0
    changed_fraction: float = 0.0
    mean_abs_diff: float = 0.0
    edge_ratio: float = 0.0
    earthy: bool = False
    complex_shapes: bool = False
    channel_means: tuple[float, float, float] = (0.0, 0.0, 0.0)
    texture_variance: float = 0.0
    confidence: float = 0.0
    label: str = "animal"

    def as_dict(self) -> dict:
        return asdict(self)


class HeuristicDetector:
    """Non-learned fallback scoring motion, edges, colour and texture.

    The detector owns the previous frame's thumbnail, so one instance must
    be used per camera run. It cannot localize; the box it reports is a
    plausible region near the frame centre.
    """

    def __init__(self, config: HeuristicConfig, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng or random.Random()
        self._previous: np.ndarray | None = None
        self._logger = logging.getLogger("wds.detector.heuristic")

    def name(self) -> str:
        return "heuristic"

    def has_previous(self) -> bool:
        return self._previous is not None

    def reset(self) -> None:
        self._previous = None

    def _thumbnail(self, buf: PixelBuffer) -> PixelBuffer:
        width, height = self._config.motion_size
        return motion_thumbnail(buf, (int(width), int(height)))

    def motion_score(self, thumb: PixelBuffer) -> tuple[float, float, float]:
        """Return (score, changed_fraction, mean_abs_diff) against the previous thumbnail."""
        previous = self._previous
        if previous is None or previous.shape != thumb.pixels.shape:
            return 0.0, 0.0, 0.0

        diff = cv2.absdiff(thumb.pixels, previous)
        changed_fraction = float(np.count_nonzero(diff > self._config.motion_pixel_delta)) / diff.size
        mean_abs_diff = float(diff.mean())
        score = min(1.0, (changed_fraction * 10.0 + mean_abs_diff / 255.0) / 2.0)
        return score, changed_fraction, mean_abs_diff

    def shape_score(self, buf: PixelBuffer) -> tuple[float, float]:
        """Return (score, edge_ratio) from a high-pass filtered grayscale image."""
        gray = normalize_contrast(buf).pixels.astype(np.float32)
        edges = cv2.filter2D(gray, -1, _EDGE_KERNEL, borderType=cv2.BORDER_REPLICATE)
        edges = np.clip(edges, 0.0, 255.0)
        edge_ratio = float(np.count_nonzero(edges > self._config.edge_threshold)) / edges.size
        return min(1.0, edge_ratio * 5.0), edge_ratio

    @staticmethod
    def color_score(buf: PixelBuffer) -> tuple[float, bool, tuple[float, float, float]]:
        """Return (score, earthy, rgb_means)."""
        means, stds = channel_stats(buf)
        if means.size < 3:
            means = np.resize(means, 3)
            stds = np.resize(stds, 3)
        red, green, blue = (float(v) for v in means[:3])
        earthy = (
            red > green
            and red > blue
            and abs(red - green) < 50.0
            and blue < red * 0.8
        )
        variance = float(stds[:3].mean())
        score = (0.7 if earthy else 0.3) + (variance / 255.0) * 0.5
        return min(1.0, max(0.0, score)), earthy, (red, green, blue)

    def texture_score(self, thumb: PixelBuffer) -> tuple[float, float]:
        """Return (score, mean local variance) sampled over a fixed patch grid."""
        pixels = thumb.pixels.astype(np.float32)
        height, width = pixels.shape[:2]
        total = 0.0
        samples = 0
        for y in _TEXTURE_GRID:
            if y + _PATCH_RADIUS >= height:
                break
            for x in _TEXTURE_GRID:
                if x + _PATCH_RADIUS >= width:
                    break
                patch = pixels[
                    y - _PATCH_RADIUS : y + _PATCH_RADIUS + 1,
                    x - _PATCH_RADIUS : x + _PATCH_RADIUS + 1,
                ]
                total += float(patch.var())
                samples += 1

        variance = total / samples if samples else 0.0
        return min(1.0, variance / self._config.texture_divisor), variance

    def _label(self, scores: HeuristicScores) -> str:
        label = "animal"
        if scores.earthy and scores.motion > 0.5:
            label = "large_mammal"
        if scores.complex_shapes and scores.earthy:
            label = "elephant"
        return label

    def _synthesize_bbox(self) -> BoundingBox:
        return BoundingBox(
            x=0.2 + self._rng.random() * 0.4,
            y=0.2 + self._rng.random() * 0.4,
            width=0.2 + self._rng.random() * 0.3,
            height=0.2 + self._rng.random() * 0.3,
        ).clamped()

    def score(self, buf: PixelBuffer) -> HeuristicScores:
        """Compute all scores for a frame and roll the previous-frame buffer forward."""
        thumb = self._thumbnail(buf)
        try:
            scores = HeuristicScores()
            scores.motion, scores.changed_fraction, scores.mean_abs_diff = self.motion_score(thumb)
            scores.shape, scores.edge_ratio = self.shape_score(buf)
            scores.complex_shapes = scores.shape > self._config.complex_shape_score
            scores.color, scores.earthy, scores.channel_means = self.color_score(buf)
            scores.texture, scores.texture_variance = self.texture_score(thumb)

            weights = self._config.weights
            scores.confidence = min(
                1.0,
                scores.motion * weights.get("motion", 0.0)
                + scores.shape * weights.get("shape", 0.0)
                + scores.color * weights.get("color", 0.0)
                + scores.texture * weights.get("texture", 0.0),
            )
            scores.label = self._label(scores)
        finally:
            self._previous = thumb.pixels.copy()

        self._logger.debug(
            "heuristic motion=%.3f changed=%.3f shape=%.3f edges=%.3f color=%.3f earthy=%s texture=%.3f variance=%.1f confidence=%.3f",
            scores.motion,
            scores.changed_fraction,
            scores.shape,
            scores.edge_ratio,
            scores.color,
            scores.earthy,
            scores.texture,
            scores.texture_variance,
            scores.confidence,
        )
        return scores

    def detect(self, buf: PixelBuffer, confidence: float) -> list[Candidate]:
        scores = self.score(buf)
        if scores.confidence <= confidence:
            return []
        return [
            Candidate(
                label=scores.label,
                confidence=scores.confidence,
                bbox=self._synthesize_bbox(),
                strategy=self.name(),
                extra={"analysis": scores.as_dict()},
            )
        ]
