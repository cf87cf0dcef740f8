from __future__ import annotations

from wds.config.models import COCO_ANIMAL_CLASS_IDS, DEFAULT_MODEL_URL

DEFAULT_CONFIG: dict = {
    "camera": {
        "url": "http://127.0.0.1:8080",
        "fetch_timeout_seconds": 8.0,
        "probe_timeout_seconds": 5.0,
        "min_frame_bytes": 1000,
        "user_agent": "wds-detection/1.0",
    },
    "model": {
        "name": "yolov5s",
        "path": "models/yolov5s.onnx",
        "labels_path": None,
        "device": "auto",
        "imgsz": 640,
        "animal_class_ids": list(COCO_ANIMAL_CLASS_IDS),
        "auto_download": True,
        "download_url": DEFAULT_MODEL_URL,
        "download_timeout_seconds": 300.0,
        "download_delay_seconds": 5.0,
        "inference_timeout_seconds": 10.0,
    },
    "detection": {
        "poll_interval_ms": 3000,
        "confidence": 0.6,
        "nms": 0.4,
        "cooldown_ms": 10000,
        "max_consecutive_failures": 5,
        "heuristic": {
            "motion_pixel_delta": 30,
            "motion_size": [320, 240],
            "edge_threshold": 100,
            "complex_shape_score": 0.3,
            "texture_divisor": 1000.0,
            "weights": {
                "motion": 0.40,
                "shape": 0.25,
                "color": 0.20,
                "texture": 0.15,
            },
        },
    },
    "monitoring": {
        "json_logs": False,
        "log_level": "INFO",
        "stats_interval_seconds": 30.0,
        "prometheus_enabled": False,
        "prometheus_host": "0.0.0.0",
        "prometheus_port": 9108,
        "event_stdout": True,
        "event_file": None,
    },
}
