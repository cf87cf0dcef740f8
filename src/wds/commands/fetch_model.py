from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import requests

from wds.commands.common import build_common_overrides, load_config
from wds.detector import ModelResource
from wds.errors import WdsError


def run_fetch_model(args: Any, repo_root: Path) -> int:
    overrides = build_common_overrides(args)
    overrides["model"]["download_url"] = args.url
    config = load_config(args, repo_root, overrides)
    logger = logging.getLogger("wds.fetch_model")

    resource = ModelResource(replace(config.model, auto_download=True))
    try:
        if args.force:
            resource.download()
        backend = resource.fetch()
    except (requests.RequestException, OSError, WdsError) as exc:
        logger.error("model fetch failed: %s", exc)
        return 1

    print(
        json.dumps(
            {
                "path": str(resource.model_path),
                "backend": backend.name(),
                "device": backend.device_info(),
                "labels": len(resource.spec.read_labels()),
            }
        )
    )
    return 0
