"""SSH probes: port reachability, authenticated command, running services."""

import asyncio
import errno

from nbdeploy.netbird.install import ARTIFACTS_DIR
from nbdeploy.provisioning.shell import run_shell_cmd
from nbdeploy.provisioning.ssh_transport import manual_ssh_command, ssh_base_args
from nbdeploy.readiness.types import DeploymentTarget, ProbeResult

SENTINEL = "NBDEPLOY_SSH_READY"


async def check_tcp_port(host, port, timeout) -> ProbeResult:
    """Single TCP connect attempt; ready iff the port accepts connections."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except TimeoutError:
        return ProbeResult.waiting(f"port {port} closed (connection timed out)")
    except ConnectionRefusedError:
        return ProbeResult.waiting(f"port {port} closed (connection refused)")
    except OSError as e:
        if e.errno in (errno.EHOSTUNREACH, errno.ENETUNREACH):
            return ProbeResult.waiting(f"port {port} unreachable (no route to host)")
        return ProbeResult.waiting(f"port {port} unreachable: {e}")
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return ProbeResult.ok(f"port {port} open")


def classify_ssh_failure(rc, stderr, target: DeploymentTarget) -> ProbeResult:
    """Map a failed ssh invocation to a diagnostic ProbeResult."""
    text = stderr or ""
    lowered = text.lower()
    if "remote host identification has changed" in lowered or "host key verification failed" in lowered:
        # Never self-heals: the known_hosts entry belongs to a previous server.
        fix = f"ssh-keygen -R {target.address}"
        if target.known_hosts:
            fix += f" -f {target.known_hosts}"
        return ProbeResult.failed(f"host key changed for {target.address}; clear it with '{fix}'")
    if "permission denied" in lowered:
        # Early in boot cloud-init may not have installed the key yet.
        return ProbeResult.waiting("auth failed (permission denied; key not installed yet or mismatched)")
    if "connection refused" in lowered:
        return ProbeResult.waiting("ssh connection refused")
    if "timed out" in lowered:
        return ProbeResult.waiting("ssh connection timed out")
    if "connection closed" in lowered or "connection reset" in lowered:
        return ProbeResult.waiting("ssh connection closed by server (sshd still starting)")
    last_line = text.strip().splitlines()[-1] if text.strip() else f"exit code {rc}"
    return ProbeResult.waiting(f"ssh failed: {last_line}")


class SshReadyProbe:
    """Ready iff port 22 is open and an authenticated command succeeds.

    Step (b) only runs when step (a) passes, so a booting server costs one
    short TCP connect per attempt instead of a full ssh handshake.
    """

    name = "ssh-ready"

    def __init__(self, connect_timeout=5, command_timeout=20):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    async def __call__(self, target: DeploymentTarget) -> ProbeResult:
        if not target.address:
            return ProbeResult.waiting("server address not known yet")

        port_result = await check_tcp_port(target.address, target.ssh_port, self.connect_timeout)
        if not port_result.ready:
            return port_result

        args = ssh_base_args(
            target.ssh_address,
            target.ssh_key,
            target.ssh_port,
            known_hosts=target.known_hosts,
            connect_timeout=self.connect_timeout,
        )
        args.append(f"echo {SENTINEL}")
        rc, stdout, stderr = await run_shell_cmd(args, timeout=self.command_timeout)
        if rc == 0 and SENTINEL in stdout:
            return ProbeResult.ok(f"ssh command succeeded on {target.address}")
        return classify_ssh_failure(rc, stderr, target)

    def describe(self, target: DeploymentTarget) -> str:
        return manual_ssh_command(target.ssh_address, target.ssh_key, target.ssh_port)


class ServicesRunningProbe:
    """Ready iff at least *min_running* NetBird containers are running."""

    name = "services-started"

    def __init__(self, min_running=4, command_timeout=20, compose_dir=ARTIFACTS_DIR):
        self.min_running = min_running
        self.command_timeout = command_timeout
        self.compose_dir = compose_dir

    def _count_command(self):
        return f"cd {self.compose_dir} && docker compose ps --filter status=running --quiet | wc -l"

    async def __call__(self, target: DeploymentTarget) -> ProbeResult:
        args = ssh_base_args(target.ssh_address, target.ssh_key, target.ssh_port, known_hosts=target.known_hosts)
        args.append(self._count_command())
        rc, stdout, stderr = await run_shell_cmd(args, timeout=self.command_timeout)
        if rc != 0:
            return classify_ssh_failure(rc, stderr, target)
        try:
            running = int(stdout.strip() or "0")
        except ValueError:
            return ProbeResult.waiting(f"unexpected container count output: {stdout.strip()!r}")
        if running >= self.min_running:
            return ProbeResult.ok(f"{running} container(s) running")
        return ProbeResult.waiting(f"{running}/{self.min_running} container(s) running")

    def describe(self, target: DeploymentTarget) -> str:
        ssh = manual_ssh_command(target.ssh_address, target.ssh_key, target.ssh_port, verbose=False)
        return f"{ssh} 'cd {self.compose_dir} && docker compose ps'"
