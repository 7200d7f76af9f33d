"""Bounded waits that bridge asynchronously arriving frames into test code."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_delay, wait_chain, wait_fixed

from exceptions import WebSocketTimeoutError
from ws_types import Clock, ConnectionState, now_ms

DEFAULT_POLL_INTERVALS_MS = (100, 250, 500)
DEFAULT_GRACE_MS = 2000

logger = logging.getLogger("ws_monitor")


async def poll_until(
    predicate: Callable[[], Any],
    timeout_ms: float,
    intervals_ms: Sequence[float] = DEFAULT_POLL_INTERVALS_MS,
    describe_state: Optional[Callable[[], dict[str, Any]]] = None,
    message: Optional[str] = None,
) -> None:
    """Evaluate ``predicate`` until it is truthy or ``timeout_ms`` elapses.

    The first check runs immediately. Waits between checks follow
    ``intervals_ms`` and the last interval repeats once the list is used up.
    Exceptions raised by the predicate propagate unchanged.

    Raises:
        WebSocketTimeoutError: carrying the elapsed time and, when
            ``describe_state`` is given, the last observed state.
    """
    waits = [wait_fixed(ms / 1000.0) for ms in intervals_ms] or [wait_fixed(0.1)]
    retrying = AsyncRetrying(
        retry=retry_if_result(lambda ok: not ok),
        wait=wait_chain(*waits),
        stop=stop_after_delay(max(timeout_ms, 0) / 1000.0),
    )

    async def _check() -> bool:
        return bool(predicate())

    started = time.monotonic()
    try:
        await retrying(_check)
    except RetryError:
        elapsed_ms = (time.monotonic() - started) * 1000.0
        raise WebSocketTimeoutError(
            message or f"Condition not met within {timeout_ms:g}ms",
            timeout_ms=timeout_ms,
            elapsed_ms=elapsed_ms,
            last_state=describe_state() if describe_state else None,
        ) from None


async def wait_for_response(
    state: ConnectionState,
    initial_count: int,
    timeout_ms: float = 5000,
    grace_ms: float = DEFAULT_GRACE_MS,
    intervals_ms: Sequence[float] = DEFAULT_POLL_INTERVALS_MS,
    clock: Clock = now_ms,
    initial_received_count: Optional[int] = None,
) -> float:
    """Wait for a round trip and return the best available response timestamp.

    First waits for the total frame count to exceed ``initial_count``, then
    gives a received frame ``grace_ms`` to arrive, since the outgoing frame is
    usually logged before the reply. The returned timestamp is, in order:
    the first new received frame, the latest received frame, or now.
    """
    if initial_received_count is None:
        initial_received_count = len(state.received_frames)

    await poll_until(
        lambda: state.frame_count > initial_count,
        timeout_ms,
        intervals_ms,
        describe_state=state.snapshot,
        message=f"No new WebSocket frames within {timeout_ms:g}ms (expected > {initial_count})",
    )

    try:
        await poll_until(
            lambda: len(state.received_frames) > initial_received_count,
            grace_ms,
            intervals_ms,
        )
    except WebSocketTimeoutError:
        logger.debug(f"No new received frame within {grace_ms:g}ms grace window")

    received = state.received_frames
    if len(received) > initial_received_count:
        return received[initial_received_count].timestamp
    if received:
        logger.warning(
            f"No new received frame after {initial_received_count} frame(s); "
            "using latest received frame timestamp as response time"
        )
        return received[-1].timestamp
    logger.warning("No received frames at all; using current time as response time")
    return clock()


async def wait_for_closure(
    state: ConnectionState,
    timeout_ms: float = 5000,
    intervals_ms: Sequence[float] = DEFAULT_POLL_INTERVALS_MS,
) -> None:
    """Wait until the close event fired or the live handle reports closed."""
    if state.closed():
        return
    try:
        await poll_until(
            state.closed,
            timeout_ms,
            intervals_ms,
            describe_state=state.snapshot,
            message=f"WebSocket did not close within {timeout_ms:g}ms",
        )
    except WebSocketTimeoutError:
        if state.closed():
            return
        logger.error(
            f"WebSocket closure timeout. Connection state: is_closed={state.is_closed}, "
            f"handle.is_closed()={state.handle_reports_closed()}"
        )
        raise
