"""Prometheus exporter exposing UD-CO2S readings over HTTP."""

from exporter.metrics import MetricsCollector, SensorMetrics
from exporter.settings import ConfigError, Settings, load_settings

__all__ = ["MetricsCollector", "SensorMetrics", "ConfigError", "Settings", "load_settings"]
