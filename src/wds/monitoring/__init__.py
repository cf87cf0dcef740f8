from wds.monitoring.logging import configure_logging
from wds.monitoring.metrics import MetricsSnapshot, RuntimeMetrics
from wds.monitoring.stats import PeriodicStatsLogger

__all__ = [
    "configure_logging",
    "MetricsSnapshot",
    "RuntimeMetrics",
    "PeriodicStatsLogger",
]
