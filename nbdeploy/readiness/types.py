"""Readiness data types: probe results, retry policies, poll outcomes, stages."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from enum import Enum


class TargetError(ValueError):
    """Raised when a write-once DeploymentTarget field is overwritten."""


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single Condition Probe invocation.

    ``facts`` carries values the probe discovered (e.g. the server's public
    address). The orchestrator records them on the target once the stage is
    Ready.
    """

    ready: bool
    detail: str
    retryable: bool = True
    facts: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, detail: str, **facts) -> "ProbeResult":
        return cls(ready=True, detail=detail, retryable=True, facts=facts)

    @classmethod
    def waiting(cls, detail: str) -> "ProbeResult":
        return cls(ready=False, detail=detail, retryable=True)

    @classmethod
    def failed(cls, detail: str) -> "ProbeResult":
        """A permanent failure: the poller stops without burning its budget."""
        return cls(ready=False, detail=detail, retryable=False)


_POLICY_FIELDS = ("max_attempts", "interval", "total_timeout", "initial_delay", "attempt_timeout")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget for one poll stage. All durations are in seconds.

    ``total_timeout`` is the authoritative bound: the poller stops when it is
    spent even if ``max_attempts`` has not been reached.
    """

    max_attempts: int
    interval: float
    total_timeout: float
    initial_delay: float = 0.0
    attempt_timeout: float = 30.0

    def __post_init__(self):
        if self.max_attempts <= 0:
            raise ValueError(f"max_attempts must be > 0, got {self.max_attempts}")
        if self.total_timeout <= 0:
            raise ValueError(f"total_timeout must be > 0, got {self.total_timeout}")
        for name in ("interval", "initial_delay", "attempt_timeout"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

    @classmethod
    def from_dict(cls, data: dict, base: "RetryPolicy | None" = None) -> "RetryPolicy":
        """Build a policy from a config mapping, overriding fields of *base*.

        Unknown keys raise ValueError so typos in config files are not ignored.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Retry policy must be a mapping, got {data!r}")
        unknown = set(data) - set(_POLICY_FIELDS)
        if unknown:
            raise ValueError(f"Unknown retry policy field(s): {', '.join(sorted(unknown))}")
        try:
            values = {k: (int(v) if k == "max_attempts" else float(v)) for k, v in data.items()}
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid retry policy value: {e}") from None
        if base is not None:
            return replace(base, **values)
        return cls(**values)

    def describe(self) -> str:
        return (
            f"{self.max_attempts} attempts every {self.interval:g}s"
            f" (budget {self.total_timeout:g}s, initial delay {self.initial_delay:g}s)"
        )


# ── Poll outcomes ─────────────────────────────────────────────────


@dataclass(frozen=True)
class Ready:
    attempts: int
    detail: str
    result: ProbeResult


@dataclass(frozen=True)
class TimedOut:
    attempts: int
    detail: str
    elapsed: float
    permanent: bool = False


@dataclass(frozen=True)
class Cancelled:
    attempts: int
    detail: str
    elapsed: float


PollOutcome = Ready | TimedOut | Cancelled


class EscalationAction(Enum):
    """What to do when a stage's poller times out."""

    ABORT = "abort"
    WARN_AND_CONTINUE = "warn"
    PROMPT_OPERATOR = "prompt"


class ContinueDecision(Enum):
    ABORT = "abort"
    PROCEED = "proceed"


# ── Deployment target ─────────────────────────────────────────────


@dataclass
class DeploymentTarget:
    """Context threaded through all probes.

    ``address`` is unknown until the server reports its public IP and is
    write-once after that.
    """

    server_name: str
    server_id: int | None = None
    domain: str | None = None
    address: str | None = None
    ssh_user: str = "root"
    ssh_port: int = 22
    ssh_key: str | None = None
    known_hosts: str | None = None

    @property
    def ssh_address(self) -> str:
        """SSH address string (user@host)."""
        host = self.address or self.server_name
        return f"{self.ssh_user}@{host}" if self.ssh_user else host

    def set_address(self, address: str):
        if not address:
            raise TargetError("Cannot set an empty address")
        if self.address is not None and self.address != address:
            raise TargetError(f"Address of '{self.server_name}' already set to {self.address}, refusing {address}")
        self.address = address

    def record(self, facts: dict):
        """Apply facts reported by a Ready probe."""
        if facts.get("address"):
            self.set_address(facts["address"])
        if facts.get("server_id") is not None and self.server_id is None:
            self.server_id = facts["server_id"]


Probe = Callable[[DeploymentTarget], Awaitable[ProbeResult]]


@dataclass(frozen=True)
class StageDescriptor:
    """One named step of the provisioning sequence.

    ``after`` lists the stages this one depends on. ``None`` means the
    immediately preceding stage; an empty tuple means no dependency at all,
    so the stage may run concurrently with its predecessors.
    """

    name: str
    probe: Probe
    policy: RetryPolicy
    on_timeout: EscalationAction = EscalationAction.ABORT
    after: tuple[str, ...] | None = None
    prepare: Callable[[DeploymentTarget], Awaitable[bool]] | None = None
    manual_command: Callable[[DeploymentTarget], str] | None = None

    def manual_hint(self, target: DeploymentTarget) -> str | None:
        if self.manual_command is not None:
            return self.manual_command(target)
        describe = getattr(self.probe, "describe", None)
        if describe is not None:
            return describe(target)
        return None
