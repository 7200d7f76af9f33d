"""Unit tests for bounded polling waits."""
from __future__ import annotations

import asyncio
import logging

import pytest

from exceptions import WebSocketTimeoutError
from polling import poll_until, wait_for_closure, wait_for_response
from ws_types import ConnectionState, Frame

FAST = [5, 10]


async def later(delay_s: float, action) -> None:
    await asyncio.sleep(delay_s)
    action()


class TestPollUntil:
    """Tests for poll_until."""

    @pytest.mark.asyncio
    async def test_returns_immediately_when_true(self):
        calls = []

        def predicate():
            calls.append(1)
            return True

        await poll_until(predicate, timeout_ms=100, intervals_ms=FAST)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_times_out_with_state(self):
        with pytest.raises(WebSocketTimeoutError) as exc_info:
            await poll_until(
                lambda: False,
                timeout_ms=40,
                intervals_ms=FAST,
                describe_state=lambda: {"sent_frames": 0},
                message="never",
            )

        error = exc_info.value
        assert error.message == "never"
        assert error.timeout_ms == 40
        assert error.elapsed_ms >= 40
        assert error.last_state == {"sent_frames": 0}

    @pytest.mark.asyncio
    async def test_predicate_errors_propagate(self):
        def predicate():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await poll_until(predicate, timeout_ms=50, intervals_ms=FAST)

    @pytest.mark.asyncio
    async def test_sees_change_made_while_waiting(self):
        flag = {"done": False}
        task = asyncio.create_task(later(0.02, lambda: flag.update(done=True)))
        await poll_until(lambda: flag["done"], timeout_ms=500, intervals_ms=FAST)
        await task


class TestWaitForResponse:
    """Tests for wait_for_response."""

    @pytest.mark.asyncio
    async def test_returns_first_new_received_timestamp(self, clock):
        state = ConnectionState()
        state.received_frames.append(Frame("prompt", 900.0))

        def reply():
            state.sent_frames.append(Frame("whoami", 1000.0))
            state.received_frames.append(Frame("developer", 1040.0))
            state.received_frames.append(Frame("$ ", 1050.0))

        task = asyncio.create_task(later(0.01, reply))
        response_time = await wait_for_response(
            state, initial_count=1, timeout_ms=500, grace_ms=100, intervals_ms=FAST, clock=clock
        )
        await task
        assert response_time == 1040.0

    @pytest.mark.asyncio
    async def test_waits_grace_for_reply_after_echo(self, clock):
        state = ConnectionState()

        async def echo_then_reply():
            await asyncio.sleep(0.01)
            state.sent_frames.append(Frame("w", 1000.0))
            await asyncio.sleep(0.03)
            state.received_frames.append(Frame("w", 1030.0))

        task = asyncio.create_task(echo_then_reply())
        response_time = await wait_for_response(
            state, initial_count=0, timeout_ms=500, grace_ms=300, intervals_ms=FAST, clock=clock
        )
        await task
        assert response_time == 1030.0

    @pytest.mark.asyncio
    async def test_falls_back_to_latest_received(self, clock, caplog):
        state = ConnectionState()
        state.received_frames.append(Frame("old", 800.0))
        state.sent_frames.append(Frame("whoami", 1000.0))

        with caplog.at_level(logging.WARNING, logger="ws_monitor"):
            response_time = await wait_for_response(
                state,
                initial_count=1,
                timeout_ms=100,
                grace_ms=20,
                intervals_ms=FAST,
                clock=clock,
                initial_received_count=1,
            )

        assert response_time == 800.0
        assert "latest received frame" in caplog.text

    @pytest.mark.asyncio
    async def test_falls_back_to_clock_without_received_frames(self, clock):
        state = ConnectionState()
        state.sent_frames.append(Frame("whoami", 1000.0))
        clock.advance(75)

        response_time = await wait_for_response(
            state, initial_count=0, timeout_ms=100, grace_ms=20, intervals_ms=FAST, clock=clock
        )
        assert response_time == 1075.0

    @pytest.mark.asyncio
    async def test_times_out_without_new_frames(self, clock):
        state = ConnectionState()
        with pytest.raises(WebSocketTimeoutError) as exc_info:
            await wait_for_response(
                state, initial_count=0, timeout_ms=40, grace_ms=20, intervals_ms=FAST, clock=clock
            )
        assert "expected > 0" in exc_info.value.message
        assert exc_info.value.last_state["received_frames"] == 0


class TestWaitForClosure:
    """Tests for wait_for_closure."""

    @pytest.mark.asyncio
    async def test_already_closed_returns(self):
        await wait_for_closure(ConnectionState(is_closed=True), timeout_ms=10, intervals_ms=FAST)

    @pytest.mark.asyncio
    async def test_detects_handle_closing(self, make_ws):
        ws = make_ws("wss://host/ws/terminal")
        state = ConnectionState(connection=ws, url=ws.url)
        task = asyncio.create_task(later(0.02, lambda: ws.close(notify=False)))

        await wait_for_closure(state, timeout_ms=500, intervals_ms=FAST)
        await task
        assert state.is_closed is False

    @pytest.mark.asyncio
    async def test_times_out_when_open(self, make_ws, caplog):
        state = ConnectionState(connection=make_ws("wss://host/ws/terminal"))
        with caplog.at_level(logging.ERROR, logger="ws_monitor"):
            with pytest.raises(WebSocketTimeoutError) as exc_info:
                await wait_for_closure(state, timeout_ms=30, intervals_ms=FAST)

        assert "did not close" in exc_info.value.message
        assert "closure timeout" in caplog.text
