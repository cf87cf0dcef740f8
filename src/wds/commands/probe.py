from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from wds.commands.common import build_common_overrides, load_config
from wds.detector import HeuristicDetector, ModelResource
from wds.errors import DecodeError, FetchError, WdsError
from wds.io.ingest import HttpSnapshotSource
from wds.pipeline.postprocess import postprocess
from wds.pipeline.preprocess import decode


def run_probe(args: Any, repo_root: Path) -> int:
    config = load_config(args, repo_root, build_common_overrides(args))
    logger = logging.getLogger("wds.probe")
    source = HttpSnapshotSource(config.camera)

    try:
        frame = source.fetch_frame(config.camera.url)
        buf = decode(frame.data)
    except (FetchError, DecodeError) as exc:
        logger.error("probe failed url=%s error=%s", config.camera.url, exc)
        print(json.dumps({"ok": False, "url": config.camera.url, "error": str(exc)}))
        return 1
    finally:
        source.close()

    scores = HeuristicDetector(config.detection.heuristic).score(buf)
    report: dict[str, Any] = {
        "ok": True,
        "url": frame.source,
        "bytes": frame.size_bytes,
        "width": buf.width,
        "height": buf.height,
        "channels": buf.channels,
        "heuristic": scores.as_dict(),
    }

    if args.with_model:
        resource = ModelResource(config.model)
        path = resource.model_path
        if path is not None and path.exists():
            try:
                backend = resource.fetch()
            except WdsError as exc:
                logger.error("model load failed: %s", exc)
                report["model"] = {"error": str(exc)}
                print(json.dumps(report, ensure_ascii=True, default=str))
                return 1
            candidates = postprocess(
                backend.infer(buf, config.detection.confidence),
                config.detection.confidence,
                config.detection.nms,
            )
            report["model"] = {
                "backend": backend.name(),
                "detections": [
                    {
                        "label": c.label,
                        "class_id": c.class_id,
                        "confidence": round(c.confidence, 4),
                        "bbox": c.bbox.to_dict(),
                    }
                    for c in candidates
                ],
            }
        else:
            report["model"] = {"error": f"model file not found: {path}"}

    print(json.dumps(report, ensure_ascii=True, default=str))
    return 0
