"""Pure verification queries over a tracked connection's state.

None of these functions mutate the state or retry. Waiting for state to
change is the job of :mod:`polling`.
"""
from __future__ import annotations

import json
from typing import List

from ws_types import (
    ClosureResult,
    ConnectionState,
    ConnectivityResult,
    IntegrityResult,
    PerformanceResult,
)

DEFAULT_LATENCY_THRESHOLD_MS = 300


def _join(reasons: List[str]) -> str:
    return "; ".join(reasons)


def verify_connectivity(state: ConnectionState) -> ConnectivityResult:
    """Succeed iff a connection was bound with a known URL after a measurable delay."""
    start = state.connection_start_time
    established = state.connection_established_time
    if start is None or established is None:
        connection_time = 0.0
    else:
        connection_time = established - start

    reasons: List[str] = []
    if not state.is_bound:
        reasons.append("WebSocket connection not established")
    else:
        if state.url is None:
            reasons.append("WebSocket URL unknown")
        if start is None:
            reasons.append("Connection start time was never recorded")
        elif connection_time <= 0:
            reasons.append(f"Connection time {connection_time:.0f}ms is not positive")

    return ConnectivityResult(
        success=not reasons,
        connection_time=connection_time,
        url=state.url,
        failure_reason=_join(reasons) if reasons else None,
    )


def verify_performance(
    state: ConnectionState,
    initial_count: int,
    send_time: float,
    response_time: float,
    threshold_ms: float = DEFAULT_LATENCY_THRESHOLD_MS,
) -> PerformanceResult:
    """Succeed iff the round trip beat ``threshold_ms`` and new frames appeared."""
    latency = response_time - send_time
    total = state.frame_count
    new_frames = max(0, total - initial_count)

    reasons: List[str] = []
    if latency >= threshold_ms:
        reasons.append(f"Latency {latency:.0f}ms >= {threshold_ms:g}ms")
    if new_frames == 0:
        reasons.append(f"No new frames detected (expected > {initial_count}, got {total})")

    return PerformanceResult(
        success=not reasons,
        latency=latency,
        threshold=threshold_ms,
        new_frames=new_frames,
        failure_reason=_join(reasons) if reasons else None,
    )


def is_valid_payload(payload: str) -> bool:
    """Structured payloads are valid when they parse; raw text when it is non-empty."""
    try:
        json.loads(payload)
        return True
    except (ValueError, TypeError):
        return bool(payload)


def verify_integrity(state: ConnectionState) -> IntegrityResult:
    """Succeed iff at least one received frame carries a coherent payload."""
    valid = 0
    invalid = 0
    for frame in state.received_frames:
        if is_valid_payload(frame.payload):
            valid += 1
        else:
            invalid += 1
    total = len(state.received_frames)

    return IntegrityResult(
        success=valid > 0,
        valid_frames=valid,
        invalid_frames=invalid,
        total_frames=total,
        failure_reason=None if valid > 0 else f"No valid frames found ({total} total)",
    )


def verify_closure(state: ConnectionState) -> ClosureResult:
    """Succeed iff a close was observed, cross-checked against the live handle."""
    is_closed = state.closed()
    return ClosureResult(
        success=is_closed,
        is_closed=is_closed,
        closure_time=state.connection_closed_time,
        failure_reason=None if is_closed else "WebSocket connection is still open",
    )
