"""Provisioning orchestrator: run readiness stages in dependency order.

Stages form a small DAG. By default every stage depends on the one before
it, which reproduces a strictly sequential deployment. A stage declared with
``after=()`` (or with an explicit list of earlier stages) starts as soon as
its dependencies are done, so independent pollers can run concurrently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from nbdeploy.readiness.escalation import ask_operator, escalate
from nbdeploy.readiness.poller import poll
from nbdeploy.readiness.types import (
    Cancelled,
    ContinueDecision,
    DeploymentTarget,
    PollOutcome,
    Ready,
    StageDescriptor,
)

logger = logging.getLogger(__name__)


class OrchestratorState(Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class StageStatus(Enum):
    READY = "ready"
    PROCEEDED = "proceeded"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    PREPARE_FAILED = "prepare-failed"


@dataclass
class StageReport:
    name: str
    status: StageStatus
    outcome: PollOutcome | None = None
    elapsed: float = 0.0
    decision: ContinueDecision | None = None

    @property
    def ok(self) -> bool:
        """True if dependents of this stage may run."""
        return self.status in (StageStatus.READY, StageStatus.PROCEEDED)


@dataclass
class OrchestratorResult:
    state: OrchestratorState
    stages: list[StageReport] = field(default_factory=list)
    failed_stage: str | None = None
    elapsed: float = 0.0
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is OrchestratorState.COMPLETED

    def report(self, name: str) -> StageReport | None:
        for stage in self.stages:
            if stage.name == name:
                return stage
        return None


def resolve_dependencies(stages: list[StageDescriptor]) -> dict[str, tuple[str, ...]]:
    """Map each stage name to the names of the stages it waits for.

    Raises:
        ValueError: on duplicate names or a dependency that is not an
            earlier stage (which also rules out cycles).
    """
    deps = {}
    for i, stage in enumerate(stages):
        if stage.name in deps:
            raise ValueError(f"Duplicate stage name '{stage.name}'")
        if stage.after is None:
            deps[stage.name] = (stages[i - 1].name,) if i > 0 else ()
        else:
            for dep in stage.after:
                if dep not in deps:
                    raise ValueError(f"Stage '{stage.name}' depends on '{dep}', which is not an earlier stage")
            deps[stage.name] = tuple(stage.after)
    return deps


class Orchestrator:
    """Sequences readiness stages and applies escalation on timeouts.

    Args:
        interactive: whether PROMPT_OPERATOR stages may ask on stdin.
        cancel: operator cancellation event (wired to SIGINT by the CLI).
        prompt: async callable(question) -> bool used for operator prompts.
    """

    def __init__(self, interactive=False, cancel: asyncio.Event | None = None, prompt=ask_operator, clock=time.monotonic):
        self.interactive = interactive
        self.cancel = cancel
        self.prompt = prompt
        self.clock = clock
        self.state = OrchestratorState.NOT_STARTED
        self.running: set[str] = set()
        self._failed_stage: str | None = None
        self._prompt_lock = asyncio.Lock()

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    async def run(self, stages: list[StageDescriptor], target: DeploymentTarget) -> OrchestratorResult:
        deps = resolve_dependencies(stages)
        self.state = OrchestratorState.RUNNING
        self._failed_stage = None
        start = self.clock()

        stop = asyncio.Event()
        watcher = asyncio.create_task(self._forward_cancel(stop)) if self.cancel is not None else None

        tasks: dict[str, asyncio.Task] = {}
        try:
            for stage in stages:
                dep_tasks = [tasks[name] for name in deps[stage.name]]
                tasks[stage.name] = asyncio.create_task(self._run_stage(stage, dep_tasks, target, stop))
            reports = list(await asyncio.gather(*tasks.values()))
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            if watcher is not None:
                watcher.cancel()

        result = OrchestratorResult(
            state=OrchestratorState.COMPLETED,
            stages=reports,
            elapsed=self.clock() - start,
            cancelled=self.cancelled,
        )
        if self.cancelled:
            result.state = OrchestratorState.ABORTED
            result.failed_stage = next((r.name for r in reports if r.status is StageStatus.CANCELLED), None)
        elif self._failed_stage is not None:
            result.state = OrchestratorState.ABORTED
            result.failed_stage = self._failed_stage
        self.state = result.state
        return result

    async def _forward_cancel(self, stop: asyncio.Event):
        await self.cancel.wait()
        stop.set()

    def _halt(self, name: str, stop: asyncio.Event):
        if self._failed_stage is None:
            self._failed_stage = name
        stop.set()

    async def _run_stage(self, stage, dep_tasks, target, stop) -> StageReport:
        dep_reports = [await task for task in dep_tasks]
        if any(not r.ok for r in dep_reports):
            return StageReport(stage.name, StageStatus.SKIPPED)
        if stop.is_set():
            status = StageStatus.CANCELLED if self.cancelled else StageStatus.SKIPPED
            return StageReport(stage.name, status)

        self.running.add(stage.name)
        start = self.clock()
        try:
            logger.info(f"[{stage.name}] Waiting: {stage.policy.describe()}")
            prepared = await self._prepare(stage, target, stop)
            if prepared is None:
                logger.warning(f"[{stage.name}] Cancelled during preparation.")
                return StageReport(stage.name, StageStatus.CANCELLED, elapsed=self.clock() - start)
            if not prepared:
                logger.error(f"[{stage.name}] Preparation failed.")
                hint = stage.manual_hint(target)
                if hint:
                    logger.error(f"  Debug with:  {hint}")
                self._halt(stage.name, stop)
                return StageReport(stage.name, StageStatus.PREPARE_FAILED, elapsed=self.clock() - start)

            outcome = await poll(stage.probe, stage.policy, target, cancel=stop, label=stage.name)

            if isinstance(outcome, Ready):
                target.record(outcome.result.facts)
                logger.info(f"[{stage.name}] Ready after {outcome.attempts} attempt(s): {outcome.detail}")
                return StageReport(stage.name, StageStatus.READY, outcome, self.clock() - start)

            if isinstance(outcome, Cancelled) or self.cancelled:
                logger.warning(f"[{stage.name}] Cancelled.")
                return StageReport(stage.name, StageStatus.CANCELLED, outcome, self.clock() - start)

            async with self._prompt_lock:
                decision = await escalate(stage, outcome, target, interactive=self.interactive, prompt=self.prompt)
            if decision is ContinueDecision.PROCEED:
                return StageReport(stage.name, StageStatus.PROCEEDED, outcome, self.clock() - start, decision)
            self._halt(stage.name, stop)
            return StageReport(stage.name, StageStatus.TIMED_OUT, outcome, self.clock() - start, decision)
        finally:
            self.running.discard(stage.name)

    async def _prepare(self, stage, target, stop) -> bool | None:
        """Run the stage's prepare step; None if *stop* fired first."""
        if stage.prepare is None:
            return True
        prepare = asyncio.create_task(stage.prepare(target))
        stopped = asyncio.create_task(stop.wait())
        interrupted = False
        try:
            await asyncio.wait({prepare, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
            if not prepare.done():
                interrupted = True
                prepare.cancel()
                await asyncio.wait({prepare})
        if interrupted:
            if not prepare.cancelled() and prepare.exception() is not None:
                logger.warning(f"[{stage.name}] Preparation failed while stopping: {prepare.exception()}")
            return None
        return prepare.result()


def log_summary(result: OrchestratorResult):
    """Log per-stage status and elapsed time."""
    logger.info("")
    logger.info("Readiness summary:")
    for report in result.stages:
        attempts = f"{report.outcome.attempts} attempt(s)" if report.outcome is not None else "-"
        logger.info(f"  {report.name:<18} {report.status.value:<15} {report.elapsed:7.1f}s  {attempts}")
    logger.info(f"  {'total':<18} {result.state.value:<15} {result.elapsed:7.1f}s")
    if result.cancelled:
        logger.error("Deployment cancelled by operator.")
    elif result.failed_stage:
        logger.error(f"Deployment aborted at stage '{result.failed_stage}' after {result.elapsed:.0f}s.")
