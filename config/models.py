"""Pydantic configuration models for the wsprobe suite."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError, ConfigurationError


# Load .env file if present
load_dotenv()

DEFAULT_CONFIG_FILES = ("wsprobe.json", "wsprobe.yaml", "wsprobe.yml")


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


class MonitorConfig(BaseModel):
    """WebSocket monitoring and verification thresholds."""

    latency_threshold_ms: float = Field(
        default=300,
        gt=0,
        description="Maximum round-trip latency accepted by performance verification",
    )
    connection_timeout_ms: float = Field(
        default=30000,
        gt=0,
        description="How long to wait for a matching WebSocket to open",
    )
    response_timeout_ms: float = Field(
        default=5000,
        gt=0,
        description="How long to wait for new frames after sending a command",
    )
    response_grace_ms: float = Field(
        default=2000,
        ge=0,
        description="Extra window for a received frame once any new frame appeared",
    )
    closure_timeout_ms: float = Field(
        default=5000,
        gt=0,
        description="How long to wait for the connection to close",
    )
    poll_intervals_ms: List[float] = Field(
        default_factory=lambda: [100, 250, 500],
        description="Polling back-off; the last interval repeats",
    )
    log_events: bool = Field(
        default=True,
        description="Log connection lifecycle events",
    )

    @field_validator("poll_intervals_ms")
    @classmethod
    def validate_intervals(cls, v: List[float]) -> List[float]:
        """Require at least one positive interval."""
        if not v:
            raise ValueError("poll_intervals_ms must not be empty")
        if any(i <= 0 for i in v):
            raise ValueError("poll_intervals_ms must be positive")
        return v

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Pick up the latency threshold from the environment if not set."""
        if not isinstance(data, dict):
            return data
        if data.get("latency_threshold_ms") is None:
            env_value = os.getenv("WS_LATENCY_THRESHOLD_MS")
            if env_value:
                data["latency_threshold_ms"] = env_value
        return data


class BrowserConfig(BaseModel):
    """Browser automation configuration."""

    browser: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )
    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    viewport_width: int = Field(
        default=1280,
        ge=800,
        le=3840,
        description="Browser viewport width",
    )
    viewport_height: int = Field(
        default=720,
        ge=600,
        le=2160,
        description="Browser viewport height",
    )
    slow_mo: int = Field(
        default=0,
        ge=0,
        le=5000,
        description="Slow down browser operations by this many ms",
    )
    navigation_timeout_ms: float = Field(
        default=15000,
        gt=0,
        description="Timeout for page navigation",
    )
    action_timeout_ms: float = Field(
        default=5000,
        gt=0,
        description="Timeout for locating and acting on elements",
    )
    cloudflare_wait_ms: float = Field(
        default=30000,
        ge=0,
        description="How long to wait for a Cloudflare challenge to clear",
    )

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Honour HEADLESS from the environment if not set."""
        if not isinstance(data, dict):
            return data
        if data.get("headless") is None:
            env_value = os.getenv("HEADLESS")
            if env_value:
                data["headless"] = _env_flag(env_value)
        return data


class ReportingConfig(BaseModel):
    """Reporting and output configuration."""

    save_screenshots: bool = Field(
        default=True,
        description="Capture a screenshot when a probe fails",
    )
    screenshots_folder: Path = Field(
        default=Path("./test-results"),
        description="Directory for failure screenshots",
    )
    reports_folder: Path = Field(
        default=Path("./reports"),
        description="Directory for saving reports",
    )
    output_format: Literal["json", "junit", "all"] = Field(
        default="json",
        description="Report output format",
    )

    @field_validator("screenshots_folder", "reports_folder", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class WSProbeConfig(BaseModel):
    """Root configuration model combining all config sections."""

    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    base_url: Optional[str] = Field(
        default=None,
        description="Base URL that relative probe URLs are resolved against",
    )
    parallel_workers: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Number of parallel probe workers",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Ensure base_url doesn't have trailing slash."""
        return v.rstrip("/") if v else v

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: Any) -> Any:
        """Load base_url from BASE_URL if not explicitly set."""
        if not isinstance(data, dict):
            return data
        if data.get("base_url") is None:
            env_value = os.getenv("BASE_URL")
            if env_value:
                data["base_url"] = env_value
        return data


def _read_config_file(config_path: Path) -> dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as f:
        if config_path.suffix in {".yaml", ".yml"}:
            import yaml
            data = yaml.safe_load(f) or {}
        else:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping: {config_path}",
            {"file_path": str(config_path)},
        )
    return data


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> WSProbeConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigFileNotFoundError(str(config_path))
        config_data = _read_config_file(config_path)
    else:
        for candidate in DEFAULT_CONFIG_FILES:
            path = Path(candidate)
            if path.exists():
                config_data = _read_config_file(path)
                break

    _apply_env(config_data)
    config = WSProbeConfig.model_validate(config_data)

    # Apply CLI overrides
    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = WSProbeConfig.model_validate(config_dict)

    return config


ENV_OVERRIDES = {
    "WS_LATENCY_THRESHOLD_MS": ("monitor", "latency_threshold_ms"),
    "HEADLESS": ("browser", "headless"),
    "BASE_URL": ("base_url", None),
}


def _apply_env(config_data: dict[str, Any]) -> None:
    """Overlay environment variables on values read from the config file."""
    for name, (section, field) in ENV_OVERRIDES.items():
        value = os.getenv(name)
        if not value:
            continue
        if name == "HEADLESS":
            value = _env_flag(value)
        if field is None:
            config_data[section] = value
            continue
        target = config_data.get(section)
        if not isinstance(target, dict):
            target = {}
            config_data[section] = target
        target[field] = value


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "browser": ("browser", "browser"),
        "headless": ("browser", "headless"),
        "parallel": ("parallel_workers", None),
        "verbose": ("verbose", None),
        "output_format": ("reporting", "output_format"),
        "reports_dir": ("reporting", "reports_folder"),
        "base_url": ("base_url", None),
        "latency_threshold": ("monitor", "latency_threshold_ms"),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "headful":
            config_dict["browser"]["headless"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
