from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf

from wds.config.defaults import DEFAULT_CONFIG
from wds.config.models import (
    CameraConfig,
    DetectionConfig,
    HeuristicConfig,
    ModelConfig,
    MonitoringConfig,
    RuntimeConfig,
)

_MODEL_DEVICES = {"auto", "cpu", "cuda", "opencl"}

_CONFIG_NAMES = (
    "wds.toml",
    "wds.yaml",
    "wds.yml",
    "wds.json",
    "settings.toml",
    "settings.yaml",
    "settings.yml",
    "settings.json",
)


def _merge_dict(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
    return base


def _lower_keys(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_lower_keys(item) for item in obj]
    return obj


def _load_with_dynaconf(config_paths: list[Path]) -> dict[str, Any]:
    settings = Dynaconf(
        envvar_prefix="WDS",
        settings_files=[str(path) for path in config_paths],
        merge_enabled=True,
        environments=False,
        load_dotenv=True,
    )
    return _lower_keys(settings.as_dict())


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _resolve_repo_relative(path_value: str | None, repo_root: Path) -> str | None:
    if not path_value:
        return path_value
    p = Path(path_value).expanduser()
    if p.is_absolute():
        return str(p)
    return str((repo_root / p).resolve())


def _motion_size(value: Any) -> list[int]:
    try:
        width, height = (int(v) for v in value)
    except (TypeError, ValueError):
        return [320, 240]
    return [max(8, width), max(8, height)]


def _model_device(value: Any) -> str:
    device = str(value or "auto").strip().lower() or "auto"
    if device not in _MODEL_DEVICES:
        raise RuntimeError(
            f"Unsupported model device: {device} (expected one of {', '.join(sorted(_MODEL_DEVICES))})"
        )
    return device


def _normalize(data: dict[str, Any], repo_root: Path) -> RuntimeConfig:
    camera_data = data.get("camera", {})
    model_data = data.get("model", {})
    detection_data = data.get("detection", {})
    heuristic_data = detection_data.get("heuristic", {})
    monitoring_data = data.get("monitoring", {})

    weights = {
        str(name): float(value)
        for name, value in heuristic_data.get("weights", {}).items()
    }

    return RuntimeConfig(
        camera=CameraConfig(
            url=str(camera_data.get("url", "http://127.0.0.1:8080")).rstrip("/"),
            fetch_timeout_seconds=max(0.1, float(camera_data.get("fetch_timeout_seconds", 8.0))),
            probe_timeout_seconds=max(0.1, float(camera_data.get("probe_timeout_seconds", 5.0))),
            min_frame_bytes=max(0, int(camera_data.get("min_frame_bytes", 1000))),
            user_agent=str(camera_data.get("user_agent", "wds-detection/1.0")),
        ),
        model=ModelConfig(
            name=str(model_data.get("name", "yolov5s")),
            path=_resolve_repo_relative(model_data.get("path"), repo_root),
            labels_path=_resolve_repo_relative(model_data.get("labels_path"), repo_root),
            device=_model_device(model_data.get("device", "auto")),
            imgsz=max(32, int(model_data.get("imgsz", 640))),
            animal_class_ids=[int(v) for v in model_data.get("animal_class_ids", [])],
            auto_download=_coerce_bool(model_data.get("auto_download", True)),
            download_url=str(model_data.get("download_url", "")),
            download_timeout_seconds=float(model_data.get("download_timeout_seconds", 300.0)),
            download_delay_seconds=max(0.0, float(model_data.get("download_delay_seconds", 5.0))),
            inference_timeout_seconds=max(
                0.1, float(model_data.get("inference_timeout_seconds", 10.0))
            ),
        ),
        detection=DetectionConfig(
            poll_interval_ms=max(1, int(detection_data.get("poll_interval_ms", 3000))),
            confidence=float(detection_data.get("confidence", 0.6)),
            nms=float(detection_data.get("nms", 0.4)),
            cooldown_ms=max(0, int(detection_data.get("cooldown_ms", 10000))),
            max_consecutive_failures=max(
                0, int(detection_data.get("max_consecutive_failures", 5))
            ),
            heuristic=HeuristicConfig(
                motion_pixel_delta=int(heuristic_data.get("motion_pixel_delta", 30)),
                motion_size=_motion_size(heuristic_data.get("motion_size", [320, 240])),
                edge_threshold=int(heuristic_data.get("edge_threshold", 100)),
                complex_shape_score=float(heuristic_data.get("complex_shape_score", 0.3)),
                texture_divisor=max(1.0, float(heuristic_data.get("texture_divisor", 1000.0))),
                weights=weights or HeuristicConfig().weights,
            ),
        ),
        monitoring=MonitoringConfig(
            json_logs=_coerce_bool(monitoring_data.get("json_logs", False)),
            log_level=str(monitoring_data.get("log_level", "INFO")).upper(),
            stats_interval_seconds=float(monitoring_data.get("stats_interval_seconds", 30.0)),
            prometheus_enabled=_coerce_bool(monitoring_data.get("prometheus_enabled", False)),
            prometheus_host=str(monitoring_data.get("prometheus_host", "0.0.0.0")),
            prometheus_port=int(monitoring_data.get("prometheus_port", 9108)),
            event_stdout=_coerce_bool(monitoring_data.get("event_stdout", True)),
            event_file=_resolve_repo_relative(monitoring_data.get("event_file"), repo_root),
        ),
    )


def _default_config_copy() -> dict[str, Any]:
    return json.loads(json.dumps(DEFAULT_CONFIG))


def load_runtime_config(
    repo_root: Path,
    config_path: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> RuntimeConfig:
    config_paths: list[Path] = []
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        config_paths.append(path)
    else:
        for name in _CONFIG_NAMES:
            candidate = repo_root / name
            if candidate.exists():
                config_paths.append(candidate)

    merged = _default_config_copy()
    _merge_dict(merged, _load_with_dynaconf(config_paths))

    if cli_overrides:
        _merge_dict(merged, _lower_keys(cli_overrides))

    return _normalize(merged, repo_root)


def runtime_config_to_dict(config: RuntimeConfig) -> dict[str, Any]:
    return asdict(config)
