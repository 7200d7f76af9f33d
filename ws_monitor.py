"""WebSocket monitoring entry point used by probes and test code.

Typical use against a Playwright page::

    monitor = setup_monitoring(page, url_filter="/ws/terminal")
    await page.goto(url)
    await monitor.wait_for_connection()
    initial = monitor.frame_count
    send_time = monitor.now()
    await page.keyboard.type("whoami\\n")
    response_time = await monitor.wait_for_response(initial)
    assert monitor.verify_performance(initial, send_time, response_time).success
"""
from __future__ import annotations

import logging
from typing import List, Optional

from config import MonitorConfig
from polling import poll_until, wait_for_closure, wait_for_response
from tracker import ConnectionTracker
from url_filter import UrlFilter
from verification import verify_closure, verify_connectivity, verify_integrity, verify_performance
from ws_types import (
    Clock,
    ClosureResult,
    ConnectionState,
    ConnectivityResult,
    Frame,
    IntegrityResult,
    PerformanceResult,
    WebSocketHandle,
    WebSocketSource,
    now_ms,
)


class WebSocketMonitor:
    """Handle over one tracker: waits, frame access and verifications."""

    def __init__(
        self,
        tracker: ConnectionTracker,
        config: Optional[MonitorConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.tracker = tracker
        self.config = config or MonitorConfig()
        self.logger = logger or tracker.logger

    @property
    def state(self) -> ConnectionState:
        return self.tracker.state

    @property
    def url(self) -> Optional[str]:
        return self.state.url

    @property
    def frame_count(self) -> int:
        return self.state.frame_count

    def now(self) -> float:
        """Current time on the tracker's clock, for recording send times."""
        return self.tracker.clock()

    async def wait_for_connection(self, timeout_ms: Optional[float] = None) -> WebSocketHandle:
        timeout_ms = timeout_ms if timeout_ms is not None else self.config.connection_timeout_ms
        return await self.tracker.await_connection(timeout_ms)

    def get_sent_frames(self) -> List[Frame]:
        return list(self.state.sent_frames)

    def get_received_frames(self) -> List[Frame]:
        return list(self.state.received_frames)

    def verify_connectivity(self) -> ConnectivityResult:
        result = verify_connectivity(self.state)
        if not result.success:
            self.logger.error(f"Connectivity failed: {result.failure_reason}")
        return result

    def verify_performance(
        self,
        initial_count: int,
        send_time: float,
        response_time: float,
        threshold_ms: Optional[float] = None,
    ) -> PerformanceResult:
        threshold_ms = threshold_ms if threshold_ms is not None else self.config.latency_threshold_ms
        result = verify_performance(self.state, initial_count, send_time, response_time, threshold_ms)
        if not result.success:
            self.logger.error(f"Performance failed: {result.failure_reason}")
        return result

    def verify_integrity(self) -> IntegrityResult:
        result = verify_integrity(self.state)
        if not result.success:
            self.logger.error(f"Integrity failed: {result.failure_reason}")
        return result

    def verify_closure(self) -> ClosureResult:
        result = verify_closure(self.state)
        if not result.success:
            self.logger.error(f"Closure failed: {result.failure_reason}")
        return result

    async def wait_for_response(
        self,
        initial_count: int,
        timeout_ms: Optional[float] = None,
        initial_received_count: Optional[int] = None,
    ) -> float:
        """Return the response timestamp for a command sent after ``initial_count`` frames."""
        return await wait_for_response(
            self.state,
            initial_count,
            timeout_ms=timeout_ms if timeout_ms is not None else self.config.response_timeout_ms,
            grace_ms=self.config.response_grace_ms,
            intervals_ms=self.config.poll_intervals_ms,
            clock=self.tracker.clock,
            initial_received_count=initial_received_count,
        )

    async def wait_for_closure(self, timeout_ms: Optional[float] = None) -> None:
        await wait_for_closure(
            self.state,
            timeout_ms=timeout_ms if timeout_ms is not None else self.config.closure_timeout_ms,
            intervals_ms=self.config.poll_intervals_ms,
        )

    async def wait_for_output(
        self,
        text: str,
        initial_received_count: int = 0,
        timeout_ms: Optional[float] = None,
    ) -> Frame:
        """Wait for a received frame after ``initial_received_count`` that contains ``text``."""
        timeout_ms = timeout_ms if timeout_ms is not None else self.config.response_timeout_ms
        found: List[Frame] = []

        def _seen() -> bool:
            for frame in self.state.received_frames[initial_received_count:]:
                if text in frame.payload:
                    found.append(frame)
                    return True
            return False

        await poll_until(
            _seen,
            timeout_ms,
            self.config.poll_intervals_ms,
            describe_state=self.state.snapshot,
            message=f"No received frame containing {text!r} within {timeout_ms:g}ms",
        )
        return found[0]


def setup_monitoring(
    page: WebSocketSource,
    url_filter: UrlFilter = None,
    config: Optional[MonitorConfig] = None,
    log_events: Optional[bool] = None,
    logger: Optional[logging.Logger] = None,
    clock: Clock = now_ms,
) -> WebSocketMonitor:
    """Start observing WebSockets opened by ``page`` and return a monitor.

    Call this before navigating so the connection's opening is not missed.
    Each call creates an independent tracker; use one per connection of interest.
    """
    config = config or MonitorConfig()
    tracker = ConnectionTracker(
        url_filter=url_filter,
        clock=clock,
        log_events=config.log_events if log_events is None else log_events,
        logger=logger,
    )
    tracker.mark_started()
    page.on("websocket", tracker.attach)
    return WebSocketMonitor(tracker, config=config, logger=logger)
