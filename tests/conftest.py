"""Pytest fixtures for wsprobe tests."""
from __future__ import annotations

import tempfile
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

from config import MonitorConfig
from probe_types import ProbeCase, ProbeRunResult, TerminalCommand, VerificationRecord


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


class FakeWebSocket:
    """Stand-in for Playwright's WebSocket: url property, on(), is_closed()."""

    def __init__(self, url: str):
        self.url = url
        self._handlers: Dict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._closed = False

    def on(self, event: str, f: Callable[..., Any]) -> None:
        self._handlers[event].append(f)

    def is_closed(self) -> bool:
        return self._closed

    def emit_sent(self, payload: Any) -> None:
        for handler in self._handlers["framesent"]:
            handler(payload)

    def emit_received(self, payload: Any) -> None:
        for handler in self._handlers["framereceived"]:
            handler(payload)

    def close(self, notify: bool = True) -> None:
        self._closed = True
        if notify:
            for handler in self._handlers["close"]:
                handler(self)


class FakePage:
    """Stand-in for Playwright's Page as a source of websocket events."""

    def __init__(self):
        self._handlers: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, f: Callable[..., Any]) -> None:
        self._handlers[event].append(f)

    def open_websocket(self, url: str) -> FakeWebSocket:
        ws = FakeWebSocket(url)
        for handler in self._handlers["websocket"]:
            handler(ws)
        return ws


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def make_page() -> Callable[[], FakePage]:
    return FakePage


@pytest.fixture
def make_ws() -> Callable[[str], FakeWebSocket]:
    return FakeWebSocket


@pytest.fixture
def fast_monitor_config() -> MonitorConfig:
    """Monitor config with short waits so timeouts resolve quickly."""
    return MonitorConfig(
        latency_threshold_ms=300,
        connection_timeout_ms=200,
        response_timeout_ms=200,
        response_grace_ms=50,
        closure_timeout_ms=200,
        poll_intervals_ms=[10, 20],
    )


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_probe_case() -> ProbeCase:
    return ProbeCase(
        id="terminal-whoami",
        url="https://app.example.com/s/abc123",
        terminal_selectors=[".xterm-helper-textarea", ".xterm"],
        commands=[TerminalCommand(send="whoami", expect="developer")],
        ws_filter="/ws/terminal",
        verify_closure=True,
        tags={"smoke", "terminal"},
        priority=1,
    )


@pytest.fixture
def sample_probe_result(sample_probe_case: ProbeCase) -> ProbeRunResult:
    return ProbeRunResult(
        case=sample_probe_case,
        success=True,
        started_at=datetime(2024, 1, 1, 10, 0, 0),
        finished_at=datetime(2024, 1, 1, 10, 0, 4),
        reason="All 4 checks passed",
        checks=[
            VerificationRecord(
                name="performance[whoami]",
                success=True,
                measurements={"latency_ms": 42.0, "threshold_ms": 300, "new_frames": 2},
            ),
            VerificationRecord(name="output[whoami]", success=True),
            VerificationRecord(
                name="connectivity",
                success=True,
                measurements={"connection_time_ms": 180.0, "url": "wss://app.example.com/ws/terminal"},
            ),
            VerificationRecord(
                name="integrity",
                success=True,
                measurements={"valid_frames": 3, "invalid_frames": 0, "total_frames": 3},
            ),
        ],
        browser_type="chromium",
        ws_url="wss://app.example.com/ws/terminal",
        sent_frames=7,
        received_frames=3,
    )


@pytest.fixture
def failed_probe_result(sample_probe_case: ProbeCase) -> ProbeRunResult:
    return ProbeRunResult(
        case=sample_probe_case,
        success=False,
        started_at=datetime(2024, 1, 1, 11, 0, 0),
        finished_at=datetime(2024, 1, 1, 11, 0, 6),
        reason="performance[whoami]: Latency 450ms >= 300ms",
        checks=[
            VerificationRecord(
                name="performance[whoami]",
                success=False,
                failure_reason="Latency 450ms >= 300ms",
                measurements={"latency_ms": 450.0, "threshold_ms": 300, "new_frames": 2},
            ),
        ],
        browser_type="chromium",
        ws_url="wss://app.example.com/ws/terminal",
        sent_frames=7,
        received_frames=1,
    )


@pytest.fixture
def sample_probe_yaml() -> str:
    """Sample YAML probe definition."""
    return """
id: terminal-smoke
url: /s/abc123
ws_filter: /ws/terminal
terminal_selectors:
  - .xterm-helper-textarea
commands:
  - send: whoami
    expect: developer
  - ls
latency_threshold_ms: 500
verify_closure: true
close_selectors:
  - 'button[aria-label="Close terminal"]'
tags:
  - smoke
  - terminal
priority: 2
"""
