from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import cv2

from wds.detector.backends.base import DetectorBackend
from wds.detector.errors import BackendUnavailable, ModelLoadError
from wds.detector.heuristic import HeuristicDetector
from wds.detector.models.model_spec import ModelSpec
from wds.types import ModelState

if TYPE_CHECKING:
    from wds.detector.resource import ModelResource

LOGGER = logging.getLogger("wds.detector.selector")


@dataclass
class BackendSelection:
    backend: DetectorBackend
    reason: str


@dataclass
class StrategySelection:
    """Strategy chosen for a single tick: either a loaded model or the heuristic."""

    kind: str
    reason: str
    backend: DetectorBackend | None = None
    heuristic: HeuristicDetector | None = None

    @property
    def name(self) -> str:
        if self.backend is not None:
            return self.backend.name()
        return "heuristic"


def _new_onnx_backend(device: str) -> DetectorBackend:
    from wds.detector.backends.onnx_backend import OnnxDnnBackend

    return OnnxDnnBackend(device=device)


def _prefer_opencv_gpu_device() -> str:
    try:
        if cv2.cuda.getCudaEnabledDeviceCount() > 0:
            return "cuda"
    except (AttributeError, cv2.error):
        pass

    try:
        if cv2.ocl.haveOpenCL():
            return "opencl"
    except (AttributeError, cv2.error):
        pass

    return "cpu"


def _choose_with_fallback(
    candidates: list[tuple[Callable[[], DetectorBackend], str]],
    model_spec: ModelSpec,
) -> BackendSelection:
    errors: list[str] = []
    for factory, reason in candidates:
        backend: DetectorBackend | None = None
        try:
            backend = factory()
            backend.load(model_spec)
            return BackendSelection(backend=backend, reason=reason)
        except (BackendUnavailable, ModelLoadError, FileNotFoundError) as exc:
            backend_name = backend.name() if backend is not None else "unknown-backend"
            errors.append(f"{backend_name}: {exc}")
            continue
        except cv2.error as exc:
            backend_name = backend.name() if backend is not None else "unknown-backend"
            errors.append(f"{backend_name}: {exc}")
            continue
    raise ModelLoadError(
        "No inference backend could be initialized. "
        + ("; ".join(errors) if errors else "No candidates evaluated.")
    )


def select_backend(model_spec: ModelSpec, device: str = "auto") -> BackendSelection:
    requested = device.lower().strip()
    if requested in {"cpu", "cuda", "opencl"}:
        return _choose_with_fallback(
            [
                (
                    lambda: _new_onnx_backend(device=requested),
                    f"Requested OpenCV DNN backend with device={requested}",
                )
            ],
            model_spec,
        )
    if requested not in {"", "auto"}:
        raise BackendUnavailable(f"Unsupported model device requested: {requested}")

    candidates: list[tuple[Callable[[], DetectorBackend], str]] = []
    preferred = _prefer_opencv_gpu_device()
    if preferred != "cpu":
        candidates.append(
            (
                lambda: _new_onnx_backend(device=preferred),
                f"Auto policy: OpenCV DNN with {preferred}",
            )
        )
    candidates.append(
        (
            lambda: _new_onnx_backend(device="cpu"),
            "Final fallback: OpenCV DNN CPU",
        )
    )
    return _choose_with_fallback(candidates, model_spec)


def select_strategy(
    resource: ModelResource | None, heuristic: HeuristicDetector
) -> StrategySelection:
    """Pick the detection strategy for the current tick.

    ``resource`` is consulted fresh on every call; ``None`` means no model
    is configured.
    """
    if resource is not None:
        state = resource.state()
        backend = resource.backend() if state == ModelState.READY else None
        if backend is not None:
            return StrategySelection(
                kind="model",
                reason=f"model ready backend={backend.name()}",
                backend=backend,
            )
        reason = f"model state={state.value}"
    else:
        reason = "no model configured"
    return StrategySelection(kind="heuristic", reason=reason, heuristic=heuristic)
