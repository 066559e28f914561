"""Escalation handler: decide what happens when a stage times out."""

import asyncio
import logging

from nbdeploy.readiness.types import (
    ContinueDecision,
    DeploymentTarget,
    EscalationAction,
    StageDescriptor,
    TimedOut,
)

logger = logging.getLogger(__name__)


def _read_yes_no(question: str) -> bool:
    """Blocking y/N prompt. EOF (closed stdin) counts as 'no'."""
    try:
        reply = input(f"{question} (y/N): ")
    except EOFError:
        return False
    return reply.strip().lower() in ("y", "yes")


async def ask_operator(question: str) -> bool:
    """Ask a y/N question without blocking the event loop."""
    return await asyncio.to_thread(_read_yes_no, question)


def diagnostic_lines(stage: StageDescriptor, outcome: TimedOut, target: DeploymentTarget) -> list[str]:
    """Human-readable failure report for a timed-out stage."""
    reason = "permanent failure" if outcome.permanent else "timed out"
    lines = [
        f"Stage '{stage.name}' {reason} after {outcome.attempts} attempt(s) ({outcome.elapsed:.0f}s)",
        f"  Last result: {outcome.detail}",
    ]
    if target.address:
        lines.append(f"  Server:      {target.server_name} ({target.address})")
    else:
        lines.append(f"  Server:      {target.server_name}")
    hint = stage.manual_hint(target)
    if hint:
        lines.append(f"  Debug with:  {hint}")
    return lines


async def escalate(
    stage: StageDescriptor,
    outcome: TimedOut,
    target: DeploymentTarget,
    interactive: bool = False,
    prompt=ask_operator,
) -> ContinueDecision:
    """Apply the stage's on_timeout policy to a TimedOut outcome.

    PROMPT_OPERATOR degrades to ABORT when *interactive* is False: a
    flag-driven run never reads stdin.
    """
    lines = diagnostic_lines(stage, outcome, target)

    if stage.on_timeout is EscalationAction.WARN_AND_CONTINUE:
        for line in lines:
            logger.warning(line)
        logger.warning(f"Continuing past '{stage.name}'; later steps retry their own connections.")
        return ContinueDecision.PROCEED

    if stage.on_timeout is EscalationAction.PROMPT_OPERATOR:
        for line in lines:
            logger.warning(line)
        if not interactive:
            logger.error(f"Non-interactive run: aborting at stage '{stage.name}'.")
            return ContinueDecision.ABORT
        if await prompt(f"Stage '{stage.name}' did not become ready. Continue anyway?"):
            logger.warning(f"Operator chose to continue past '{stage.name}'.")
            return ContinueDecision.PROCEED
        logger.error(f"Operator aborted at stage '{stage.name}'.")
        return ContinueDecision.ABORT

    for line in lines:
        logger.error(line)
    return ContinueDecision.ABORT
