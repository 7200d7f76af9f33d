"""Configuration module for the wsprobe suite."""
from config.models import (
    BrowserConfig,
    MonitorConfig,
    ReportingConfig,
    WSProbeConfig,
    load_config,
)

__all__ = [
    "BrowserConfig",
    "MonitorConfig",
    "ReportingConfig",
    "WSProbeConfig",
    "load_config",
]
