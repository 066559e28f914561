"""Default retry policies per stage, overridable from the config file."""

from nbdeploy.readiness.types import RetryPolicy

SERVER_BOOT = "server-boot"
SSH_READY = "ssh-ready"
SERVICES_STARTED = "services-started"
DNS_PROPAGATED = "dns-propagated"
TLS_CERT = "tls-cert"

STAGE_NAMES = (SERVER_BOOT, SSH_READY, SERVICES_STARTED, DNS_PROPAGATED, TLS_CERT)

DEFAULT_POLICIES = {
    # Fresh servers need a head start before the API reports them running.
    SERVER_BOOT: RetryPolicy(max_attempts=60, interval=5, total_timeout=300, initial_delay=30, attempt_timeout=15),
    SSH_READY: RetryPolicy(max_attempts=60, interval=5, total_timeout=420, attempt_timeout=20),
    SERVICES_STARTED: RetryPolicy(max_attempts=30, interval=10, total_timeout=330, attempt_timeout=20),
    DNS_PROPAGATED: RetryPolicy(max_attempts=20, interval=30, total_timeout=600, attempt_timeout=10),
    # Certificate issuance waits on DNS propagation outside our control.
    TLS_CERT: RetryPolicy(max_attempts=30, interval=30, total_timeout=900, attempt_timeout=20),
}


def resolve_policies(config: dict | None = None) -> dict[str, RetryPolicy]:
    """Merge the ``readiness`` section of *config* over the defaults.

    Example config::

        readiness:
          tls-cert:
            max_attempts: 60
            interval: 15

    Raises:
        ValueError: on an unknown stage name or policy field.
    """
    overrides = (config or {}).get("readiness") or {}
    policies = dict(DEFAULT_POLICIES)
    for stage, values in overrides.items():
        if stage not in policies:
            raise ValueError(f"Unknown readiness stage '{stage}'. Known stages: {', '.join(STAGE_NAMES)}")
        try:
            policies[stage] = RetryPolicy.from_dict(values or {}, base=policies[stage])
        except ValueError as e:
            raise ValueError(f"Readiness stage '{stage}': {e}") from None
    return policies
