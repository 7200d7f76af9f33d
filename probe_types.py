"""Typed objects for terminal WebSocket probes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from url_filter import UrlFilter, build_filter


@dataclass
class TerminalCommand:
    """One command typed into the terminal, with optional expected output."""

    send: str
    expect: Optional[str] = None


@dataclass
class ProbeCase:
    """Single terminal WebSocket probe definition."""

    id: str
    url: str
    terminal_selectors: List[str]
    commands: List[TerminalCommand]
    ws_filter: Optional[str] = None
    ws_filter_regex: Optional[str] = None
    latency_threshold_ms: Optional[float] = None
    verify_closure: bool = False
    close_selectors: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    tags: Set[str] = field(default_factory=set)
    skip: bool = False
    skip_reason: Optional[str] = None
    retry_count: int = 0

    priority: int = field(default=5)  # 1 = highest, 10 = lowest

    @property
    def url_filter(self) -> UrlFilter:
        return build_filter(self.ws_filter, self.ws_filter_regex)

    def has_any_tag(self, tags: Set[str]) -> bool:
        """Check if probe has any of the specified tags."""
        lower_tags = {t.lower() for t in tags}
        return bool(lower_tags & {t.lower() for t in self.tags})

    def matches_filter(
        self,
        include_tags: Optional[Set[str]] = None,
        exclude_tags: Optional[Set[str]] = None,
    ) -> bool:
        """Check if probe matches tag filters."""
        if include_tags and not self.has_any_tag(include_tags):
            return False
        if exclude_tags and self.has_any_tag(exclude_tags):
            return False
        return True


@dataclass
class VerificationRecord:
    """Outcome of one check performed during a probe."""

    name: str
    success: bool
    failure_reason: Optional[str] = None
    measurements: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProbeRunResult:
    """Outcome of a probe execution."""

    case: ProbeCase
    success: bool
    started_at: datetime
    finished_at: datetime
    reason: str
    checks: List[VerificationRecord] = field(default_factory=list)

    retry_attempt: int = 0
    browser_type: Optional[str] = None
    ws_url: Optional[str] = None
    sent_frames: int = 0
    received_frames: int = 0
    screenshot_path: Optional[str] = None
    console_errors: List[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def failed_checks(self) -> List[VerificationRecord]:
        return [c for c in self.checks if not c.success]

    @property
    def status(self) -> str:
        return "passed" if self.success else "failed"


@dataclass
class ProbeSuiteResult:
    """Aggregated results for a probe suite run."""

    results: List[ProbeRunResult]
    started_at: datetime
    finished_at: datetime

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def pass_rate(self) -> float:
        return (self.passed / self.total * 100) if self.total else 0.0

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def failed_probes(self) -> List[ProbeRunResult]:
        return [r for r in self.results if not r.success]
