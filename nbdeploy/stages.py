"""Readiness stages of a NetBird deployment.

    server-boot -> ssh-ready -> services-started --.
         \\                                         >-> tls-cert
          `-> dns-propagated ---------------------'

DNS only needs the server's address, so it is polled while SSH comes up and
the stack is installed. The certificate can only be issued once both the
reverse proxy is running and the domain points at the server.
"""

from dataclasses import replace

from nbdeploy.probes import (
    DnsResolvesProbe,
    DryRunProbe,
    ServerRunningProbe,
    ServicesRunningProbe,
    SshReadyProbe,
    TlsCertProbe,
    dry_run_server_probe,
)
from nbdeploy.provisioning.ssh_transport import forget_host_key
from nbdeploy.readiness.orchestrator import resolve_dependencies
from nbdeploy.readiness.policies import (
    DNS_PROPAGATED,
    SERVER_BOOT,
    SERVICES_STARTED,
    SSH_READY,
    STAGE_NAMES,
    TLS_CERT,
)
from nbdeploy.readiness.types import EscalationAction, StageDescriptor

ON_TIMEOUT = {
    SERVER_BOOT: EscalationAction.ABORT,
    SSH_READY: EscalationAction.PROMPT_OPERATOR,
    SERVICES_STARTED: EscalationAction.PROMPT_OPERATOR,
    # Both can still settle after the run; the summary prints how to check.
    DNS_PROPAGATED: EscalationAction.WARN_AND_CONTINUE,
    TLS_CERT: EscalationAction.WARN_AND_CONTINUE,
}


def build_stages(
    policies,
    client=None,
    install=None,
    min_running=4,
    with_domain=True,
    forget_host_keys=False,
    server_created=False,
    dry_run=False,
) -> list[StageDescriptor]:
    """Build the stage list for a deployment.

    Args:
        policies: stage name -> RetryPolicy (see resolve_policies()).
        client: HetznerClient for the server-boot probe; without one the
            stage is left out and the target's address must already be known.
        install: optional async callable(target) -> bool run before the
            services-started stage polls (installs and starts NetBird).
        min_running: containers required by the services-started probe.
        with_domain: include the DNS and TLS stages.
        forget_host_keys: clear known_hosts entries for the address before
            polling SSH (set when the server was just created).
        server_created: keep the server-boot initial delay; an existing server
            is probed right away.
        dry_run: replace probes with ones that log and report Ready.
    """
    if dry_run:
        policies = {name: replace(policy, initial_delay=0) for name, policy in policies.items()}
    elif not server_created and SERVER_BOOT in policies:
        policies = {**policies, SERVER_BOOT: replace(policies[SERVER_BOOT], initial_delay=0)}

    stages = []
    if client is not None:
        probe = ServerRunningProbe(client)
        stages.append(
            StageDescriptor(
                name=SERVER_BOOT,
                probe=dry_run_server_probe(probe) if dry_run else probe,
                policy=policies[SERVER_BOOT],
                on_timeout=ON_TIMEOUT[SERVER_BOOT],
                after=(),
            )
        )

    def _wrap(probe):
        return DryRunProbe(probe) if dry_run else probe

    async def _forget_stale_host_key(target):
        # A recreated server keeps its IP but not its host key
        if target.known_hosts and target.address:
            await forget_host_key(target.address, target.known_hosts, dry_run=dry_run)
        return True

    roots = (SERVER_BOOT,) if client is not None else ()
    stages.append(
        StageDescriptor(
            name=SSH_READY,
            probe=_wrap(SshReadyProbe()),
            policy=policies[SSH_READY],
            on_timeout=ON_TIMEOUT[SSH_READY],
            after=roots,
            prepare=_forget_stale_host_key if forget_host_keys else None,
        )
    )
    stages.append(
        StageDescriptor(
            name=SERVICES_STARTED,
            probe=_wrap(ServicesRunningProbe(min_running=min_running)),
            policy=policies[SERVICES_STARTED],
            on_timeout=ON_TIMEOUT[SERVICES_STARTED],
            after=(SSH_READY,),
            prepare=install,
        )
    )
    if with_domain:
        stages.append(
            StageDescriptor(
                name=DNS_PROPAGATED,
                probe=_wrap(DnsResolvesProbe()),
                policy=policies[DNS_PROPAGATED],
                on_timeout=ON_TIMEOUT[DNS_PROPAGATED],
                after=roots,
            )
        )
        stages.append(
            StageDescriptor(
                name=TLS_CERT,
                probe=_wrap(TlsCertProbe()),
                policy=policies[TLS_CERT],
                on_timeout=ON_TIMEOUT[TLS_CERT],
                after=(SERVICES_STARTED, DNS_PROPAGATED),
            )
        )
    return stages


def select_stages(stages: list[StageDescriptor], names) -> list[StageDescriptor]:
    """Keep only the stages in *names*, rewiring dependencies past dropped ones.

    Raises:
        ValueError: on an unknown stage name.
    """
    names = list(names)
    known = {stage.name for stage in stages}
    unknown = [n for n in names if n not in known]
    if unknown:
        raise ValueError(f"Unknown stage(s): {', '.join(unknown)}. Available: {', '.join(s for s in STAGE_NAMES if s in known)}")

    deps = resolve_dependencies(stages)
    wanted = set(names)

    def kept_deps(name):
        result = []
        for dep in deps[name]:
            if dep in wanted:
                result.append(dep)
            else:
                result.extend(d for d in kept_deps(dep) if d not in result)
        return result

    return [replace(stage, after=tuple(kept_deps(stage.name))) for stage in stages if stage.name in wanted]
