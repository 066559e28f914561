"""Readiness polling: probe results, retry policies, poller, escalation, orchestrator."""

from nbdeploy.readiness.escalation import escalate
from nbdeploy.readiness.orchestrator import (
    Orchestrator,
    OrchestratorResult,
    OrchestratorState,
    StageReport,
    StageStatus,
    log_summary,
)
from nbdeploy.readiness.poller import interruptible_sleep, poll
from nbdeploy.readiness.policies import DEFAULT_POLICIES, resolve_policies
from nbdeploy.readiness.types import (
    Cancelled,
    ContinueDecision,
    DeploymentTarget,
    EscalationAction,
    ProbeResult,
    Ready,
    RetryPolicy,
    StageDescriptor,
    TargetError,
    TimedOut,
)

__all__ = [
    "Cancelled",
    "ContinueDecision",
    "DEFAULT_POLICIES",
    "DeploymentTarget",
    "EscalationAction",
    "Orchestrator",
    "OrchestratorResult",
    "OrchestratorState",
    "ProbeResult",
    "Ready",
    "RetryPolicy",
    "StageDescriptor",
    "StageReport",
    "StageStatus",
    "TargetError",
    "TimedOut",
    "escalate",
    "interruptible_sleep",
    "log_summary",
    "poll",
    "resolve_policies",
]
