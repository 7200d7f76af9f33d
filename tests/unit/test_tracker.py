"""Unit tests for frame recording and connection tracking."""
from __future__ import annotations

import asyncio
import re

import pytest

from exceptions import WebSocketTimeoutError
from tracker import ConnectionTracker, FrameRecorder, normalize_payload
from ws_types import ConnectionState


class Unprintable:
    def __str__(self):
        raise RuntimeError("no str for you")


class TestNormalizePayload:
    """Tests for payload normalization."""

    def test_text_passes_through(self):
        assert normalize_payload('{"type": "pong"}') == '{"type": "pong"}'

    def test_binary_decoded_as_utf8(self):
        assert normalize_payload("développeur".encode("utf-8")) == "développeur"
        assert normalize_payload(bytearray(b"ls -la")) == "ls -la"

    def test_invalid_utf8_does_not_raise(self):
        assert normalize_payload(b"ok\xff") == "ok�"

    def test_other_values_stringified(self):
        assert normalize_payload(42) == "42"

    def test_broken_str_falls_back_to_repr(self):
        assert normalize_payload(Unprintable()).startswith("<")


class TestFrameRecorder:
    """Tests for FrameRecorder."""

    def test_preserves_fifo_order_per_direction(self, clock):
        state = ConnectionState()
        recorder = FrameRecorder(state, clock=clock)
        for i in range(5):
            clock.advance(1)
            recorder.record("sent", f"s{i}")
        for i in range(3):
            clock.advance(1)
            recorder.record("received", f"r{i}")

        assert [f.payload for f in state.sent_frames] == ["s0", "s1", "s2", "s3", "s4"]
        assert [f.payload for f in state.received_frames] == ["r0", "r1", "r2"]
        assert state.sent_frames[0].timestamp == 1001.0
        assert state.received_frames[-1].timestamp == 1008.0

    def test_unknown_direction_is_dropped(self, clock):
        state = ConnectionState()
        recorder = FrameRecorder(state, clock=clock)
        assert recorder.record("sideways", "x") is None
        assert state.frame_count == 0


class TestConnectionTracker:
    """Tests for ConnectionTracker binding and lifecycle."""

    def test_attach_binds_first_connection(self, clock, make_ws):
        tracker = ConnectionTracker(clock=clock)
        tracker.mark_started()
        clock.advance(25)
        ws = make_ws("wss://host/ws/terminal")
        tracker.attach(ws)

        assert tracker.state.connection is ws
        assert tracker.state.url == "wss://host/ws/terminal"
        assert tracker.state.connection_established_time == 1025.0

    def test_attach_ignores_non_matching(self, clock, make_ws):
        tracker = ConnectionTracker(url_filter="/ws/terminal", clock=clock)
        ws = make_ws("wss://host/ws/lsp")
        tracker.attach(ws)
        ws.emit_received("hello")

        assert not tracker.state.is_bound
        assert tracker.state.received_frames == []

    def test_first_match_wins(self, clock, make_ws):
        tracker = ConnectionTracker(url_filter=re.compile(r"/ws/"), clock=clock)
        first = make_ws("wss://host/ws/one")
        second = make_ws("wss://host/ws/two")
        tracker.attach(first)
        tracker.attach(second)
        second.emit_sent("ignored")
        first.emit_sent("kept")

        assert tracker.state.url == "wss://host/ws/one"
        assert [f.payload for f in tracker.state.sent_frames] == ["kept"]

    def test_frames_forwarded_to_recorder(self, clock, make_ws):
        tracker = ConnectionTracker(clock=clock)
        ws = make_ws("wss://host/ws/terminal")
        tracker.attach(ws)
        ws.emit_sent("whoami")
        ws.emit_received(b"developer")

        assert tracker.state.sent_frames[0].payload == "whoami"
        assert tracker.state.received_frames[0].payload == "developer"

    def test_close_is_idempotent(self, clock, make_ws):
        tracker = ConnectionTracker(clock=clock)
        ws = make_ws("wss://host/ws/terminal")
        tracker.attach(ws)
        clock.advance(100)
        ws.close()
        clock.advance(100)
        tracker.on_close()

        assert tracker.state.is_closed is True
        assert tracker.state.connection_closed_time == 1100.0

    def test_unreadable_url_is_ignored(self, clock):
        class BrokenSocket:
            @property
            def url(self):
                raise RuntimeError("gone")

        tracker = ConnectionTracker(clock=clock)
        tracker.attach(BrokenSocket())
        assert not tracker.state.is_bound

    def test_mark_started_keeps_first_value(self, clock):
        tracker = ConnectionTracker(clock=clock)
        tracker.mark_started()
        clock.advance(50)
        tracker.mark_started()
        assert tracker.state.connection_start_time == 1000.0

    def test_invalid_filter_rejected_up_front(self):
        with pytest.raises(TypeError):
            ConnectionTracker(url_filter=["/ws"])


class TestAwaitConnection:
    """Tests for ConnectionTracker.await_connection."""

    @pytest.mark.asyncio
    async def test_returns_already_bound_connection(self, clock, make_ws):
        tracker = ConnectionTracker(url_filter="/ws/terminal", clock=clock)
        ws = make_ws("wss://host/ws/terminal")
        tracker.attach(ws)

        assert await tracker.await_connection(timeout_ms=50) is ws

    @pytest.mark.asyncio
    async def test_resolves_when_connection_attaches_later(self, clock, make_ws):
        tracker = ConnectionTracker(clock=clock)
        waiter = asyncio.create_task(tracker.await_connection(timeout_ms=1000))
        await asyncio.sleep(0)
        ws = make_ws("wss://host/ws/terminal")
        tracker.attach(ws)

        assert await waiter is ws
        assert tracker._waiters == []

    @pytest.mark.asyncio
    async def test_times_out_without_connection(self, clock):
        tracker = ConnectionTracker(clock=clock)
        with pytest.raises(WebSocketTimeoutError) as exc_info:
            await tracker.await_connection(timeout_ms=30)

        assert "No WebSocket connection opened" in exc_info.value.message
        assert exc_info.value.last_state["bound"] is False
        assert tracker._waiters == []

    @pytest.mark.asyncio
    async def test_filter_specific_timeout_message(self, clock, make_ws):
        tracker = ConnectionTracker(url_filter="/ws/terminal", clock=clock)
        tracker.attach(make_ws("wss://host/ws/lsp"))
        with pytest.raises(WebSocketTimeoutError) as exc_info:
            await tracker.await_connection(timeout_ms=30)

        assert "/ws/terminal" in exc_info.value.message
        assert exc_info.value.url_filter == "/ws/terminal"
