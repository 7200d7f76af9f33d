"""Base reporter interface for probe runs."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List

from probe_types import ProbeRunResult


class ReportFormat(str, Enum):
    """Supported report formats."""
    JSON = "json"
    JUNIT = "junit"
    ALL = "all"


class BaseReporter(ABC):
    """Writes probe results to ``output_dir`` and returns the written file."""

    extension: str = ""

    @abstractmethod
    def generate(self, result: ProbeRunResult, output_dir: Path) -> Path:
        """Report a single probe result."""

    @abstractmethod
    def generate_suite(self, results: List[ProbeRunResult], output_dir: Path) -> Path:
        """Report a whole suite run, including the summary."""

    @property
    @abstractmethod
    def format(self) -> ReportFormat:
        pass

    def _target(self, output_dir: Path, prefix: str) -> Path:
        """Create ``output_dir`` and return a timestamped file path inside it."""
        output_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return output_dir / f"{prefix}-{stamp}{self.extension}"
