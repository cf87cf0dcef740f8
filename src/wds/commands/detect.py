from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import Any

from wds.commands.common import build_common_overrides, load_config
from wds.detector import ModelResource
from wds.io.output import JsonEventSink
from wds.monitoring import RuntimeMetrics
from wds.pipeline.service import DetectionService
from wds.types import ServiceState


def build_detect_overrides(args: Any) -> dict[str, Any]:
    overrides = build_common_overrides(args)
    overrides["model"]["auto_download"] = False if args.no_model_download else None
    overrides["detection"] = {
        "poll_interval_ms": args.poll_interval_ms,
        "confidence": args.confidence,
        "nms": args.nms,
        "cooldown_ms": args.cooldown_ms,
        "max_consecutive_failures": args.max_failures,
    }
    overrides["monitoring"].update(
        {
            "prometheus_enabled": (True if args.prometheus else None),
            "prometheus_host": args.prometheus_host,
            "prometheus_port": args.prometheus_port,
            "event_stdout": (False if args.no_event_stdout else None),
            "event_file": args.event_file,
        }
    )
    return overrides


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        logging.getLogger("wds.detect").info("received signal=%d, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_detect(args: Any, repo_root: Path) -> int:
    config = load_config(args, repo_root, build_detect_overrides(args))
    logger = logging.getLogger("wds.detect")
    logger.info("starting detect with config=%s", config.as_log_context())

    metrics = RuntimeMetrics()
    if config.monitoring.prometheus_enabled:
        enabled = metrics.enable_prometheus(
            config.monitoring.prometheus_host,
            config.monitoring.prometheus_port,
        )
        if enabled:
            logger.info(
                "prometheus endpoint enabled at %s:%d",
                config.monitoring.prometheus_host,
                config.monitoring.prometheus_port,
            )
        else:
            logger.warning("prometheus requested but prometheus_client is not installed")

    model = None if args.heuristic_only else ModelResource(config.model)
    service = DetectionService(config, model=model, metrics=metrics)

    event_sink = JsonEventSink(
        stdout_enabled=config.monitoring.event_stdout,
        file_path=config.monitoring.event_file,
    )
    if event_sink.enabled():
        event_sink.open()
        service.subscribe(event_sink)

    stop_event = threading.Event()
    _install_signal_handlers(stop_event)

    try:
        result = service.start()
        if not result.success:
            logger.error("detect failed to start: %s", result.message)
            return 1

        while not stop_event.wait(0.5):
            status = service.status()
            if status.state == ServiceState.ERROR:
                logger.error("detection stopped: %s", status.last_error)
                return 1
        return 0
    finally:
        service.close()
        event_sink.close()
        snapshot = metrics.snapshot()
        logger.info(
            "detect finished ticks=%d frames=%d published=%d",
            snapshot.ticks,
            snapshot.frames_fetched,
            snapshot.detections_published,
        )
