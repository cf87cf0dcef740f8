from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from wds.config import RuntimeConfig, load_runtime_config
from wds.monitoring import configure_logging


def clean_overrides(payload: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, dict):
            nested = clean_overrides(value)
            if nested:
                cleaned[key] = nested
            continue
        if value is not None:
            cleaned[key] = value
    return cleaned


def build_common_overrides(args: Any) -> dict[str, Any]:
    return {
        "camera": {
            "url": args.camera_url,
        },
        "model": {
            "path": args.model_path,
            "labels_path": args.labels_path,
            "device": args.device,
        },
        "monitoring": {
            "json_logs": (True if args.json_logs else None),
            "log_level": args.log_level,
        },
    }


def load_config(args: Any, repo_root: Path, overrides: dict[str, Any]) -> RuntimeConfig:
    config = load_runtime_config(
        repo_root=repo_root,
        config_path=args.config,
        cli_overrides=clean_overrides(overrides),
    )
    if args.quiet:
        config.monitoring.log_level = "WARNING"

    configure_logging(
        level=config.monitoring.log_level,
        json_logs=config.monitoring.json_logs,
    )
    logging.getLogger("wds.cli").debug("config=%s", config.as_log_context())
    return config
