from __future__ import annotations

import cv2
import numpy as np

from wds.errors import DecodeError
from wds.types import PixelBuffer

MOTION_SIZE = (320, 240)


def decode(data: bytes) -> PixelBuffer:
    """Decode JPEG/PNG bytes into a BGR pixel buffer."""
    if not data:
        raise DecodeError("Empty image payload")

    raw = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(raw, cv2.IMREAD_UNCHANGED)
    except cv2.error as exc:
        raise DecodeError(f"Image decode failed: {exc}") from exc
    if image is None or image.size == 0:
        raise DecodeError(f"Unsupported or corrupt image data ({len(data)} bytes)")

    if image.dtype != np.uint8:
        image = cv2.convertScaleAbs(image, alpha=255.0 / max(1.0, float(image.max())))
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return PixelBuffer(pixels=image, color="bgr")


def resize(buf: PixelBuffer, width: int, height: int) -> PixelBuffer:
    if buf.width == width and buf.height == height:
        return buf
    shrinking = width < buf.width or height < buf.height
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    pixels = cv2.resize(buf.pixels, (int(width), int(height)), interpolation=interpolation)
    return PixelBuffer(pixels=pixels, color=buf.color)


def to_grayscale(buf: PixelBuffer) -> PixelBuffer:
    if buf.color == "gray":
        return buf
    code = cv2.COLOR_RGB2GRAY if buf.color == "rgb" else cv2.COLOR_BGR2GRAY
    return PixelBuffer(pixels=cv2.cvtColor(buf.pixels, code), color="gray")


def to_rgb(buf: PixelBuffer) -> PixelBuffer:
    if buf.color == "rgb":
        return buf
    if buf.color == "gray":
        return PixelBuffer(pixels=cv2.cvtColor(buf.pixels, cv2.COLOR_GRAY2RGB), color="rgb")
    return PixelBuffer(pixels=cv2.cvtColor(buf.pixels, cv2.COLOR_BGR2RGB), color="rgb")


def normalize_contrast(buf: PixelBuffer) -> PixelBuffer:
    """Stretch intensities to span 0..255 (flat images stay flat)."""
    gray = to_grayscale(buf)
    low = int(gray.pixels.min())
    high = int(gray.pixels.max())
    if high <= low:
        return gray
    stretched = cv2.normalize(gray.pixels, None, 0, 255, cv2.NORM_MINMAX)
    return PixelBuffer(pixels=stretched, color="gray")


def motion_thumbnail(buf: PixelBuffer, size: tuple[int, int] = MOTION_SIZE) -> PixelBuffer:
    """Small grayscale copy used for frame differencing and texture sampling."""
    return resize(to_grayscale(buf), size[0], size[1])


def to_model_tensor(buf: PixelBuffer, size: int = 640) -> np.ndarray:
    """Square-resize, convert to RGB, scale to [0, 1] and lay out as NCHW."""
    rgb = to_rgb(resize(buf, size, size))
    tensor = rgb.pixels.astype(np.float32) / 255.0
    tensor = np.transpose(tensor, (2, 0, 1))
    return np.ascontiguousarray(tensor[None])


def channel_stats(buf: PixelBuffer) -> tuple[np.ndarray, np.ndarray]:
    """Per-channel mean and standard deviation in RGB order."""
    rgb = to_rgb(buf)
    mean, std = cv2.meanStdDev(rgb.pixels)
    return mean.reshape(-1).astype(np.float64), std.reshape(-1).astype(np.float64)
