"""Poll a resource until an asynchronous change reaches its target status."""

from __future__ import annotations

import time
from collections.abc import Callable, Collection

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
from tenacity.wait import wait_base

from private_site.config.models import PollingConfig
from private_site.errors import ConvergenceTimeout, TerminalRemoteError
from private_site.resources.base import ResourceApi, ResourceState

logger = structlog.get_logger()


def _wait_strategy(policy: PollingConfig) -> wait_base:
    if policy.backoff <= 1.0:
        return wait_fixed(policy.interval_seconds)
    return wait_exponential(
        multiplier=policy.interval_seconds,
        exp_base=policy.backoff,
        max=policy.max_interval_seconds,
    )


def await_status(
    api: ResourceApi,
    ref: str,
    target_status: str,
    policy: PollingConfig | None = None,
    *,
    terminal_statuses: Collection[str] = (),
    key: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ResourceState:
    """Block until ``api.get_status(ref)`` reports *target_status*.

    Returns the freshly read state of *key* (or *ref* when no key is
    given) once converged.  Raises :class:`TerminalRemoteError` as soon
    as a status in *terminal_statuses* is observed, and
    :class:`ConvergenceTimeout` (carrying the last observed status) after
    ``policy.max_attempts`` polls without resolution.  No sleep follows the
    final poll.
    """
    policy = policy or PollingConfig()
    kind = api.kind.value
    label = key or ref

    def _poll() -> str:
        status = api.get_status(ref)
        if status in terminal_statuses:
            logger.error(f"{kind}.terminal_status", key=label, status=status)
            msg = f"{kind} {label} entered terminal status {status}"
            raise TerminalRemoteError(msg, kind=kind, key=label, status=status)
        return status

    def _timed_out(retry_state: RetryCallState) -> str:
        assert retry_state.outcome is not None
        last = retry_state.outcome.result()
        logger.warning(
            f"{kind}.convergence_timeout",
            key=label,
            target=target_status,
            last_status=last,
            attempts=retry_state.attempt_number,
        )
        msg = (
            f"Timed out waiting for {kind} {label} to reach {target_status} "
            f"(last status: {last}); check it manually"
        )
        raise ConvergenceTimeout(
            msg,
            kind=kind,
            key=label,
            target_status=target_status,
            last_status=last,
            attempts=retry_state.attempt_number,
        )

    def _log_wait(retry_state: RetryCallState) -> None:
        assert retry_state.outcome is not None
        logger.info(
            f"{kind}.waiting",
            key=label,
            status=retry_state.outcome.result(),
            target=target_status,
            attempt=retry_state.attempt_number,
            max_attempts=policy.max_attempts,
        )

    retryer = Retrying(
        retry=retry_if_result(lambda status: status != target_status),
        stop=stop_after_attempt(policy.max_attempts),
        wait=_wait_strategy(policy),
        before_sleep=_log_wait,
        retry_error_callback=_timed_out,
        sleep=sleep,
    )
    status = retryer(_poll)
    logger.info(f"{kind}.converged", key=label, status=status)
    return api.get(key if key is not None else ref)
