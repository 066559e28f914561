"""Tests for the provisioning orchestrator: ordering, escalation, cancellation."""

import asyncio

import pytest

from nbdeploy.readiness import (
    EscalationAction,
    Orchestrator,
    OrchestratorState,
    ProbeResult,
    RetryPolicy,
    StageDescriptor,
    StageStatus,
)
from nbdeploy.readiness.orchestrator import resolve_dependencies

FAST = RetryPolicy(max_attempts=3, interval=0, total_timeout=5)


def _stage(name, probe, on_timeout=EscalationAction.ABORT, after=None, prepare=None, policy=FAST):
    return StageDescriptor(name=name, probe=probe, policy=policy, on_timeout=on_timeout, after=after, prepare=prepare)


async def _never_prompt(question):
    raise AssertionError(f"unexpected prompt: {question}")


# ── Dependency resolution ───────────────────────────────────────────


def test_resolve_dependencies_defaults_to_previous_stage(scripted_probe):
    probe = scripted_probe([ProbeResult.ok("ok")])
    stages = [_stage("a", probe), _stage("b", probe), _stage("c", probe, after=("a",)), _stage("d", probe, after=())]

    assert resolve_dependencies(stages) == {"a": (), "b": ("a",), "c": ("a",), "d": ()}


def test_resolve_dependencies_rejects_duplicates_and_forward_refs(scripted_probe):
    probe = scripted_probe([ProbeResult.ok("ok")])
    with pytest.raises(ValueError, match="Duplicate"):
        resolve_dependencies([_stage("a", probe), _stage("a", probe)])
    with pytest.raises(ValueError, match="not an earlier stage"):
        resolve_dependencies([_stage("a", probe, after=("b",)), _stage("b", probe)])


# ── Sequential runs ─────────────────────────────────────────────────


def test_all_stages_ready(scripted_probe, target):
    stages = [
        _stage("server-boot", scripted_probe([ProbeResult.ok("running")])),
        _stage("ssh-ready", scripted_probe([ProbeResult.waiting("refused"), ProbeResult.ok("ok")])),
        _stage("tls-cert", scripted_probe([ProbeResult.ok("valid")])),
    ]
    orchestrator = Orchestrator(prompt=_never_prompt)
    result = asyncio.run(orchestrator.run(stages, target))

    assert result.state is OrchestratorState.COMPLETED
    assert result.succeeded
    assert orchestrator.state is OrchestratorState.COMPLETED
    assert [r.name for r in result.stages] == ["server-boot", "ssh-ready", "tls-cert"]
    assert all(r.status is StageStatus.READY for r in result.stages)
    assert result.report("ssh-ready").outcome.attempts == 2
    assert result.failed_stage is None


def test_dependent_probe_never_runs_before_its_dependency(scripted_probe, target):
    target.address = None
    order = []

    def record(name):
        return lambda t: order.append(name)

    def needs_address(t):
        assert t.address == "203.0.113.5", "probe invoked before the address was known"
        order.append("b")

    stages = [
        _stage("a", scripted_probe([ProbeResult.waiting("initializing"), ProbeResult.ok("running", address="203.0.113.5")], on_call=record("a"))),
        _stage("b", scripted_probe([ProbeResult.ok("ssh ok")], on_call=needs_address)),
        _stage("c", scripted_probe([ProbeResult.ok("tls ok")], on_call=record("c"))),
    ]
    result = asyncio.run(Orchestrator().run(stages, target))

    assert result.succeeded
    assert order == ["a", "a", "b", "c"]
    assert target.address == "203.0.113.5"


def test_ready_facts_recorded_on_target(scripted_probe, target):
    target.address = None
    stages = [_stage("server-boot", scripted_probe([ProbeResult.ok("running", address="203.0.113.9", server_id=42)]))]
    asyncio.run(Orchestrator().run(stages, target))

    assert target.address == "203.0.113.9"
    assert target.server_id == 42


def test_abort_halts_and_skips_dependents(scripted_probe, target):
    later = scripted_probe([ProbeResult.ok("ok")])
    stages = [
        _stage("server-boot", scripted_probe([ProbeResult.ok("running")])),
        _stage("ssh-ready", scripted_probe([ProbeResult.waiting("port closed")])),
        _stage("tls-cert", later),
    ]
    result = asyncio.run(Orchestrator(prompt=_never_prompt).run(stages, target))

    assert result.state is OrchestratorState.ABORTED
    assert result.failed_stage == "ssh-ready"
    assert result.report("ssh-ready").status is StageStatus.TIMED_OUT
    assert result.report("tls-cert").status is StageStatus.SKIPPED
    assert later.calls == 0
    assert result.elapsed >= 0


def test_warn_and_continue_proceeds(scripted_probe, target):
    last = scripted_probe([ProbeResult.ok("ok")])
    stages = [
        _stage("dns", scripted_probe([ProbeResult.waiting("nxdomain")]), on_timeout=EscalationAction.WARN_AND_CONTINUE),
        _stage("tls-cert", last),
    ]
    result = asyncio.run(Orchestrator(prompt=_never_prompt).run(stages, target))

    assert result.succeeded
    assert result.report("dns").status is StageStatus.PROCEEDED
    assert last.calls == 1


def test_prompt_operator_non_interactive_aborts_without_prompting(scripted_probe, target):
    stages = [_stage("ssh-ready", scripted_probe([ProbeResult.waiting("auth failed")]), on_timeout=EscalationAction.PROMPT_OPERATOR)]
    result = asyncio.run(Orchestrator(interactive=False, prompt=_never_prompt).run(stages, target))

    assert result.state is OrchestratorState.ABORTED
    assert result.failed_stage == "ssh-ready"


def test_prompt_operator_interactive_yes_proceeds(scripted_probe, target):
    questions = []

    async def say_yes(question):
        questions.append(question)
        return True

    stages = [
        _stage("ssh-ready", scripted_probe([ProbeResult.waiting("auth failed")]), on_timeout=EscalationAction.PROMPT_OPERATOR),
        _stage("services-started", scripted_probe([ProbeResult.ok("4 running")])),
    ]
    result = asyncio.run(Orchestrator(interactive=True, prompt=say_yes).run(stages, target))

    assert result.succeeded
    assert result.report("ssh-ready").status is StageStatus.PROCEEDED
    assert len(questions) == 1


def test_prepare_failure_aborts_stage(scripted_probe, target):
    probe = scripted_probe([ProbeResult.ok("running")])

    async def failing_install(t):
        return False

    stages = [_stage("services-started", probe, prepare=failing_install), _stage("tls-cert", scripted_probe([ProbeResult.ok("ok")]))]
    result = asyncio.run(Orchestrator().run(stages, target))

    assert result.state is OrchestratorState.ABORTED
    assert result.failed_stage == "services-started"
    assert result.report("services-started").status is StageStatus.PREPARE_FAILED
    assert result.report("tls-cert").status is StageStatus.SKIPPED
    assert probe.calls == 0


# ── Concurrency ─────────────────────────────────────────────────────


def test_independent_stages_run_concurrently(target):
    running = set()
    overlap = []

    class SlowProbe:
        def __init__(self, name):
            self.name = name

        async def __call__(self, t):
            running.add(self.name)
            await asyncio.sleep(0.05)
            if len(running) > 1:
                overlap.append(set(running))
            running.discard(self.name)
            return ProbeResult.ok(self.name)

    stages = [
        _stage("ssh-ready", SlowProbe("ssh-ready"), after=()),
        _stage("dns-propagated", SlowProbe("dns-propagated"), after=()),
    ]
    result = asyncio.run(Orchestrator().run(stages, target))

    assert result.succeeded
    assert overlap


def test_abort_cancels_independent_in_flight_stage(scripted_probe, target):
    class HostKeyChanged:
        async def __call__(self, t):
            # Let the independent stage start polling first
            await asyncio.sleep(0.05)
            return ProbeResult.failed("host key changed")

    slow = scripted_probe([ProbeResult.waiting("nxdomain")])
    stages = [
        _stage("ssh-ready", HostKeyChanged(), after=()),
        _stage(
            "dns-propagated",
            slow,
            after=(),
            on_timeout=EscalationAction.WARN_AND_CONTINUE,
            policy=RetryPolicy(max_attempts=100, interval=5, total_timeout=60),
        ),
    ]
    result = asyncio.run(Orchestrator(prompt=_never_prompt).run(stages, target))

    assert result.state is OrchestratorState.ABORTED
    assert result.failed_stage == "ssh-ready"
    assert result.report("dns-propagated").status is StageStatus.CANCELLED
    assert not result.cancelled


# ── Operator cancellation ───────────────────────────────────────────


def test_operator_cancel_bypasses_escalation(scripted_probe, target):
    policy = RetryPolicy(max_attempts=100, interval=5, total_timeout=60)
    stages = [
        _stage("server-boot", scripted_probe([ProbeResult.waiting("initializing")]), policy=policy),
        _stage("ssh-ready", scripted_probe([ProbeResult.ok("ok")])),
    ]

    async def scenario():
        cancel = asyncio.Event()
        orchestrator = Orchestrator(interactive=True, cancel=cancel, prompt=_never_prompt)
        task = asyncio.create_task(orchestrator.run(stages, target))
        await asyncio.sleep(0.05)
        assert orchestrator.running == {"server-boot"}
        assert orchestrator.state is OrchestratorState.RUNNING
        cancel.set()
        return await task

    result = asyncio.run(scenario())

    assert result.state is OrchestratorState.ABORTED
    assert result.cancelled
    assert result.failed_stage == "server-boot"
    assert result.report("server-boot").status is StageStatus.CANCELLED
    assert result.report("ssh-ready").status is StageStatus.SKIPPED


def test_operator_cancel_interrupts_slow_prepare(scripted_probe, target):
    probe = scripted_probe([ProbeResult.ok("running")])
    interrupted = []

    async def slow_install(t):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            interrupted.append(True)
            raise
        return True

    stages = [_stage("services-started", probe, prepare=slow_install), _stage("tls-cert", scripted_probe([ProbeResult.ok("ok")]))]

    async def scenario():
        cancel = asyncio.Event()
        orchestrator = Orchestrator(cancel=cancel, prompt=_never_prompt)
        task = asyncio.create_task(orchestrator.run(stages, target))
        await asyncio.sleep(0.05)
        cancel.set()
        return await asyncio.wait_for(task, timeout=2)

    result = asyncio.run(scenario())

    assert result.state is OrchestratorState.ABORTED
    assert result.cancelled
    assert result.failed_stage == "services-started"
    assert result.report("services-started").status is StageStatus.CANCELLED
    assert result.report("tls-cert").status is StageStatus.SKIPPED
    assert interrupted == [True]
    assert probe.calls == 0


def test_abort_in_parallel_branch_interrupts_prepare(target):
    class HostKeyChanged:
        async def __call__(self, t):
            await asyncio.sleep(0.05)
            return ProbeResult.failed("host key changed")

    async def slow_install(t):
        await asyncio.sleep(30)
        return True

    stages = [
        _stage("ssh-ready", HostKeyChanged(), after=()),
        _stage("services-started", HostKeyChanged(), after=(), prepare=slow_install),
    ]

    async def scenario():
        return await asyncio.wait_for(Orchestrator(prompt=_never_prompt).run(stages, target), timeout=2)

    result = asyncio.run(scenario())

    assert result.state is OrchestratorState.ABORTED
    assert result.failed_stage == "ssh-ready"
    assert result.report("services-started").status is StageStatus.CANCELLED
    assert not result.cancelled
