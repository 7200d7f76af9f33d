"""Typed objects for WebSocket observation and verification."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Literal, Optional, Protocol

Direction = Literal["sent", "received"]
Clock = Callable[[], float]


def now_ms() -> float:
    """Monotonic clock in milliseconds, shared by trackers and callers."""
    return time.monotonic() * 1000.0


class WebSocketHandle(Protocol):
    """One live connection as exposed by the browser automation layer.

    Playwright's ``WebSocket`` satisfies this: ``url`` is a property, handlers
    are registered for ``framesent``, ``framereceived`` and ``close``.
    """

    @property
    def url(self) -> str: ...

    def on(self, event: str, f: Callable[..., Any]) -> Any: ...

    def is_closed(self) -> bool: ...


class WebSocketSource(Protocol):
    """Anything that announces new connections through a ``websocket`` event."""

    def on(self, event: str, f: Callable[..., Any]) -> Any: ...


@dataclass(frozen=True)
class Frame:
    """One observed WebSocket message."""

    payload: str
    timestamp: float


@dataclass
class ConnectionState:
    """Lifecycle and frame logs of the single connection a tracker is bound to."""

    url: Optional[str] = None
    connection: Optional[WebSocketHandle] = None
    sent_frames: List[Frame] = field(default_factory=list)
    received_frames: List[Frame] = field(default_factory=list)
    connection_start_time: Optional[float] = None
    connection_established_time: Optional[float] = None
    connection_closed_time: Optional[float] = None
    is_closed: bool = False

    @property
    def is_bound(self) -> bool:
        return self.connection is not None

    @property
    def frame_count(self) -> int:
        return len(self.sent_frames) + len(self.received_frames)

    def handle_reports_closed(self) -> bool:
        """Ask the live handle directly; a handle that cannot answer counts as open."""
        if self.connection is None:
            return False
        try:
            return bool(self.connection.is_closed())
        except Exception:
            return False

    def closed(self) -> bool:
        return self.is_closed or self.handle_reports_closed()

    def snapshot(self) -> dict[str, Any]:
        """Compact view of the state for diagnostics."""
        return {
            "url": self.url,
            "bound": self.is_bound,
            "sent_frames": len(self.sent_frames),
            "received_frames": len(self.received_frames),
            "is_closed": self.is_closed,
        }


@dataclass(frozen=True)
class ConnectivityResult:
    success: bool
    connection_time: float
    url: Optional[str]
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class PerformanceResult:
    success: bool
    latency: float
    threshold: float
    new_frames: int
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class IntegrityResult:
    success: bool
    valid_frames: int
    invalid_frames: int
    total_frames: int
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class ClosureResult:
    success: bool
    is_closed: bool
    closure_time: Optional[float]
    failure_reason: Optional[str] = None
