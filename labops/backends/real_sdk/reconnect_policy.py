"""Bounded reconnect attempts and the backend lifecycle state machine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from labops.backends.base import CameraBackend
from labops.backends.real_sdk.error_mapper import map_real_failure
from labops.core.errors import BackendError, LifecycleError
from labops.core.logging_utils import LoggerLike, ensure_structured_logger

DEFAULT_RECONNECT_RETRY_LIMIT = 3
EXHAUSTED_SENTINEL = "reconnect attempts exhausted"

_DISCONNECT_MARKERS = ("disconnect", "connection lost", "link down")


def is_likely_disconnect_error(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _DISCONNECT_MARKERS)


def compute_reconnect_attempts_remaining(retry_limit: int, attempts_used: int) -> int:
    return max(0, retry_limit - attempts_used)


@dataclass
class ReconnectAttemptResult:
    reconnected: bool = False
    attempts_used_total: int = 0
    error: str = ""


def execute_reconnect_attempts(
    backend: CameraBackend,
    max_attempts: int,
    attempts_used_total: int,
    *,
    logger: LoggerLike = None,
) -> ReconnectAttemptResult:
    """Run up to ``max_attempts`` connect-then-start cycles.

    The running total is incremented before each attempt so the returned
    count matches the attempts actually started, even when they fail.

    Args:
        backend: Backend that just reported a disconnect.
        max_attempts: Attempts allowed for this incident.
        attempts_used_total: Attempts already consumed earlier in the run.
        logger: Optional logger for per-attempt structured lines.

    Returns:
        ReconnectAttemptResult with ``reconnected`` set on the first full
        success, otherwise the last formatted error.
    """
    log = ensure_structured_logger(logger, fallback_name=__name__)
    result = ReconnectAttemptResult(attempts_used_total=attempts_used_total)
    last_error = ""

    for attempt in range(1, max_attempts + 1):
        result.attempts_used_total += 1
        base_fields = {
            "attempt": attempt,
            "attempts_used_total": result.attempts_used_total,
            "max_attempts_for_disconnect": max_attempts,
        }

        try:
            backend.connect()
        except BackendError as exc:
            mapped = map_real_failure("connect", str(exc))
            last_error = mapped.formatted_message
            log.warning(
                "reconnect attempt connect failed",
                **base_fields,
                error_code=mapped.stable_code,
                error_action=mapped.actionable_message,
                error=mapped.detail,
            )
            continue

        try:
            backend.start()
        except BackendError as exc:
            mapped = map_real_failure("start", str(exc))
            last_error = mapped.formatted_message
            log.warning(
                "reconnect attempt start failed",
                **base_fields,
                error_code=mapped.stable_code,
                error_action=mapped.actionable_message,
                error=mapped.detail,
            )
            try:
                backend.stop()
            except BackendError as stop_exc:
                log.debug("best-effort stop after failed start", error=stop_exc)
            continue

        log.info(
            "reconnect attempt succeeded",
            **base_fields,
            error_code="",
            error_action="",
            error="",
        )
        result.reconnected = True
        result.error = ""
        return result

    result.error = last_error or EXHAUSTED_SENTINEL
    return result


class LifecycleState(Enum):
    CLOSED = "closed"
    CONNECTED = "connected"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


_ALLOWED: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.CLOSED: frozenset({LifecycleState.CONNECTED}),
    LifecycleState.CONNECTED: frozenset({LifecycleState.STREAMING, LifecycleState.CLOSED}),
    LifecycleState.STREAMING: frozenset({
        LifecycleState.CONNECTED, LifecycleState.RECONNECTING, LifecycleState.CLOSED,
    }),
    LifecycleState.RECONNECTING: frozenset({LifecycleState.STREAMING, LifecycleState.FAILED}),
    LifecycleState.FAILED: frozenset(),
}


class BackendLifecycle:
    """Tracks the run-level lifecycle of one backend instance.

    Closed -> Connected -> Streaming -> Connected on stop; Streaming ->
    Reconnecting on disconnect, which resolves to Streaming or the terminal
    Failed state. Teardown returns Connected/Streaming to Closed.
    """

    def __init__(self, *, logger: LoggerLike = None) -> None:
        self._state = LifecycleState.CLOSED
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    @property
    def state(self) -> LifecycleState:
        return self._state

    def transition(self, target: LifecycleState) -> None:
        if target not in _ALLOWED[self._state]:
            raise LifecycleError(
                f"illegal backend lifecycle transition {self._state.value} -> {target.value}"
            )
        self._logger.debug("lifecycle transition", from_state=self._state.value, to_state=target.value)
        self._state = target

    def on_connected(self) -> None:
        self.transition(LifecycleState.CONNECTED)

    def on_started(self) -> None:
        self.transition(LifecycleState.STREAMING)

    def on_stopped(self) -> None:
        self.transition(LifecycleState.CONNECTED)

    def on_disconnect(self) -> None:
        self.transition(LifecycleState.RECONNECTING)

    def on_reconnect_result(self, result: ReconnectAttemptResult) -> None:
        self.transition(LifecycleState.STREAMING if result.reconnected else LifecycleState.FAILED)

    def teardown(self) -> Optional[LifecycleState]:
        if self._state in (LifecycleState.CONNECTED, LifecycleState.STREAMING):
            self.transition(LifecycleState.CLOSED)
        return self._state


__all__ = [
    "DEFAULT_RECONNECT_RETRY_LIMIT",
    "EXHAUSTED_SENTINEL",
    "BackendLifecycle",
    "LifecycleState",
    "ReconnectAttemptResult",
    "compute_reconnect_attempts_remaining",
    "execute_reconnect_attempts",
    "is_likely_disconnect_error",
]
