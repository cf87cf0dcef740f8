from __future__ import annotations

import argparse
from pathlib import Path


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to TOML/YAML/JSON config file")
    parser.add_argument("--camera-url", help="Camera base URL, e.g. http://192.168.1.20:8080")
    parser.add_argument("--model-path", help="ONNX detector path")
    parser.add_argument("--labels-path", help="Label file path (defaults to the 80 COCO labels)")
    parser.add_argument(
        "--device",
        choices=["auto", "cpu", "cuda", "opencl"],
        help="OpenCV DNN device for the model",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Runtime log level")
    parser.add_argument("--quiet", action="store_true", help="Suppress non-warning logs")


def _add_detect_args(parser: argparse.ArgumentParser) -> None:
    _add_config_args(parser)
    parser.add_argument("--poll-interval-ms", type=int, help="Milliseconds between camera polls")
    parser.add_argument("--confidence", type=float, help="Confidence threshold")
    parser.add_argument("--nms", type=float, help="NMS IoU threshold")
    parser.add_argument("--cooldown-ms", type=int, help="Minimum milliseconds between published detections")
    parser.add_argument(
        "--max-failures",
        type=int,
        help="Consecutive camera failures before entering the error state (0 disables)",
    )
    parser.add_argument(
        "--no-model-download",
        action="store_true",
        help="Do not fetch the model when it is missing; use the heuristic detector",
    )
    parser.add_argument("--heuristic-only", action="store_true", help="Never load the model")
    parser.add_argument("--prometheus", action="store_true", help="Enable Prometheus metrics endpoint")
    parser.add_argument("--prometheus-host", help="Prometheus bind host")
    parser.add_argument("--prometheus-port", type=int, help="Prometheus bind port")
    parser.add_argument("--event-file", help="Write per-detection JSON events to file")
    parser.add_argument("--no-event-stdout", action="store_true", help="Disable per-detection JSON events on stdout")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wds",
        description="Wildlife detection from networked camera snapshots",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    detect = subparsers.add_parser("detect", help="Poll the camera and publish detections")
    _add_detect_args(detect)

    probe = subparsers.add_parser("probe", help="Fetch and analyze a single camera frame")
    _add_config_args(probe)
    probe.add_argument(
        "--with-model",
        action="store_true",
        help="Also run the model on the frame when it is present locally",
    )

    fetch_model = subparsers.add_parser("fetch-model", help="Download the model artifact and verify it loads")
    _add_config_args(fetch_model)
    fetch_model.add_argument("--url", help="Override model download URL")
    fetch_model.add_argument("--force", action="store_true", help="Download even if the file exists")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    repo_root = Path(__file__).resolve().parents[2]

    if args.command == "detect":
        from wds.commands.detect import run_detect

        return run_detect(args, repo_root)
    if args.command == "probe":
        from wds.commands.probe import run_probe

        return run_probe(args, repo_root)
    if args.command == "fetch-model":
        from wds.commands.fetch_model import run_fetch_model

        return run_fetch_model(args, repo_root)

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
