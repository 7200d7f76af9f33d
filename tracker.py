"""Frame recording and connection tracking for a single WebSocket under test."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional

from exceptions import WebSocketTimeoutError
from url_filter import UrlFilter, describe_filter, matches
from ws_types import Clock, ConnectionState, Direction, Frame, WebSocketHandle, now_ms


def normalize_payload(payload: Any) -> str:
    """Render a frame payload as text without ever raising."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload).decode("utf-8", errors="replace")
    try:
        return str(payload)
    except Exception:
        return object.__repr__(payload)


class FrameRecorder:
    """Append-only, timestamped log of the frames seen on one connection."""

    def __init__(
        self,
        state: ConnectionState,
        clock: Clock = now_ms,
        logger: Optional[logging.Logger] = None,
    ):
        self.state = state
        self.clock = clock
        self.logger = logger or logging.getLogger("ws_monitor")

    def record(self, direction: Direction, payload: Any) -> Optional[Frame]:
        """Record one frame. Called from transport callbacks, so it never raises."""
        frame = Frame(payload=normalize_payload(payload), timestamp=self.clock())
        if direction == "sent":
            self.state.sent_frames.append(frame)
        elif direction == "received":
            self.state.received_frames.append(frame)
        else:
            self.logger.warning(f"Dropping frame with unknown direction: {direction!r}")
            return None
        return frame


class ConnectionTracker:
    """Binds to the first connection that passes the URL filter and records it.

    All mutations happen inside transport callbacks on the event loop and are
    single appends or one-way flag sets, so verification reads never need a lock.
    """

    def __init__(
        self,
        url_filter: UrlFilter = None,
        clock: Clock = now_ms,
        log_events: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        # Fail fast on a filter type we cannot evaluate.
        matches("", url_filter)
        self.url_filter = url_filter
        self.clock = clock
        self.log_events = log_events
        self.logger = logger or logging.getLogger("ws_monitor")
        self.state = ConnectionState()
        self.recorder = FrameRecorder(self.state, clock=clock, logger=self.logger)
        self._waiters: List[asyncio.Future] = []

    def mark_started(self) -> None:
        """Record when observation began; later calls keep the first value."""
        if self.state.connection_start_time is None:
            self.state.connection_start_time = self.clock()

    def attach(self, ws: WebSocketHandle) -> None:
        """Consider a newly opened connection; first match wins."""
        try:
            url = ws.url
        except Exception as exc:
            self.logger.warning(f"Could not read WebSocket URL, ignoring connection: {exc}")
            return

        if not matches(url, self.url_filter):
            if self.log_events:
                self.logger.info(f"WebSocket ignored (doesn't match filter): {url}")
            return

        if self.state.connection is not None:
            self.logger.debug(f"WebSocket ignored (already tracking {self.state.url}): {url}")
            return

        self.state.connection_established_time = self.clock()
        self.state.connection = ws
        self.state.url = url

        try:
            ws.on("framesent", lambda payload: self.recorder.record("sent", payload))
            ws.on("framereceived", lambda payload: self.recorder.record("received", payload))
            ws.on("close", lambda *_: self.on_close())
        except Exception as exc:
            self.logger.warning(f"Failed to subscribe to WebSocket events for {url}: {exc}")

        if self.log_events:
            self.logger.info(f"WebSocket connected: {url}")

        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(ws)

    def on_close(self) -> None:
        """Mark the bound connection closed; repeated notifications are ignored."""
        if self.state.is_closed:
            return
        self.state.connection_closed_time = self.clock()
        self.state.is_closed = True
        if self.log_events:
            self.logger.info(f"WebSocket closed: {self.state.url}")

    async def await_connection(self, timeout_ms: float) -> WebSocketHandle:
        """Return the bound connection, waiting up to ``timeout_ms`` for one to appear."""
        self.mark_started()

        # No await between the check and the waiter registration: attach() runs
        # on the same loop and cannot slip in between.
        state = self.state
        if state.connection is not None and state.url is not None and matches(state.url, self.url_filter):
            return state.connection

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        started = time.monotonic()
        try:
            return await asyncio.wait_for(waiter, timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            elapsed_ms = (time.monotonic() - started) * 1000.0
            label = describe_filter(self.url_filter)
            if label:
                message = f"No WebSocket matching {label} opened within {timeout_ms:g}ms"
            else:
                message = f"No WebSocket connection opened within {timeout_ms:g}ms"
            raise WebSocketTimeoutError(
                message,
                timeout_ms=timeout_ms,
                elapsed_ms=elapsed_ms,
                last_state=state.snapshot(),
                url_filter=label,
            ) from None
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
