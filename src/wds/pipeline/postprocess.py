from __future__ import annotations

from dataclasses import replace

from wds.types import BoundingBox, Candidate


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over union of two normalized boxes."""
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x2, b.x2)
    y2 = min(a.y2, b.y2)
    if x2 <= x1 or y2 <= y1:
        return 0.0

    intersection = (x2 - x1) * (y2 - y1)
    union = a.area + b.area - intersection
    if union <= 0.0:
        return 0.0
    return intersection / union


def filter_by_confidence(candidates: list[Candidate], threshold: float) -> list[Candidate]:
    return [c for c in candidates if c.confidence >= threshold]


def non_max_suppression(candidates: list[Candidate], iou_threshold: float) -> list[Candidate]:
    """Greedy NMS; returns survivors ordered by descending confidence."""
    if len(candidates) <= 1:
        return list(candidates)

    ordered = sorted(candidates, key=lambda c: c.confidence, reverse=True)
    keep: list[Candidate] = []
    suppressed: set[int] = set()

    for i, current in enumerate(ordered):
        if i in suppressed:
            continue
        keep.append(current)
        for j in range(i + 1, len(ordered)):
            if j in suppressed:
                continue
            if iou(current.bbox, ordered[j].bbox) > iou_threshold:
                suppressed.add(j)

    return keep


def postprocess(
    candidates: list[Candidate],
    confidence: float,
    iou_threshold: float,
) -> list[Candidate]:
    survivors = non_max_suppression(filter_by_confidence(candidates, confidence), iou_threshold)
    return [replace(c, bbox=c.bbox.clamped()) for c in survivors]
