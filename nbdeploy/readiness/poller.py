"""Readiness poller: drive a Condition Probe under a RetryPolicy."""

import asyncio
import logging
import time

from nbdeploy.readiness.types import (
    Cancelled,
    DeploymentTarget,
    PollOutcome,
    Probe,
    ProbeResult,
    Ready,
    RetryPolicy,
    TimedOut,
)

logger = logging.getLogger(__name__)


async def interruptible_sleep(delay: float, cancel: asyncio.Event | None) -> bool:
    """Sleep for *delay* seconds unless *cancel* is set first.

    Returns:
        True if cancellation was signalled, False if the full delay elapsed.
    """
    if cancel is None:
        if delay > 0:
            await asyncio.sleep(delay)
        return False
    if cancel.is_set():
        return True
    if delay <= 0:
        return False
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except TimeoutError:
        return False
    return True


async def _run_probe(probe: Probe, target: DeploymentTarget, timeout: float) -> ProbeResult:
    try:
        return await asyncio.wait_for(probe(target), timeout=timeout)
    except TimeoutError:
        return ProbeResult.waiting(f"probe timed out after {timeout:.0f}s")


async def poll(
    probe: Probe,
    policy: RetryPolicy,
    target: DeploymentTarget,
    cancel: asyncio.Event | None = None,
    progress=None,
    label: str | None = None,
    clock=time.monotonic,
) -> PollOutcome:
    """Poll *probe* until it reports ready, the budget is spent, or cancel is set.

    Args:
        probe: async callable(target) -> ProbeResult performing one check.
        policy: attempt/interval/timeout budget for this stage.
        target: deployment context handed to the probe.
        cancel: optional event; when set, the poller returns Cancelled at the
            next sleep boundary (or before the next attempt).
        progress: optional callable(attempt, elapsed, result) invoked after
            every attempt.
        label: name used in progress lines (defaults to the probe's name).
        clock: monotonic time source, injectable for tests.

    Returns:
        Ready, TimedOut or Cancelled. Exactly one outcome per call.
    """
    label = label or getattr(probe, "name", None) or "probe"
    start = clock()
    attempts = 0
    last_detail = "not probed"

    def elapsed() -> float:
        return clock() - start

    def remaining() -> float:
        return policy.total_timeout - elapsed()

    if policy.initial_delay > 0:
        logger.info(f"[{label}] Waiting {policy.initial_delay:g}s before the first check...")
        if await interruptible_sleep(min(policy.initial_delay, max(remaining(), 0)), cancel):
            return Cancelled(attempts, "cancelled during initial delay", elapsed())

    while attempts < policy.max_attempts and remaining() > 0:
        if cancel is not None and cancel.is_set():
            return Cancelled(attempts, last_detail, elapsed())

        attempts += 1
        attempt_timeout = min(policy.attempt_timeout, remaining()) if policy.attempt_timeout > 0 else remaining()
        result = await _run_probe(probe, target, attempt_timeout)
        last_detail = result.detail

        logger.info(f"[{label}] Attempt {attempts}/{policy.max_attempts} ({elapsed():.0f}s): {result.detail}")
        if progress is not None:
            progress(attempts, elapsed(), result)

        if result.ready:
            return Ready(attempts, result.detail, result)
        if not result.retryable:
            return TimedOut(attempts, result.detail, elapsed(), permanent=True)

        if attempts >= policy.max_attempts or remaining() <= 0:
            break
        if await interruptible_sleep(min(policy.interval, remaining()), cancel):
            return Cancelled(attempts, last_detail, elapsed())

    return TimedOut(attempts, last_detail, elapsed())
