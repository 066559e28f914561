"""SSH transport: run commands and write files on remote servers via SSH/SCP."""

import logging
import os
import shlex
import tempfile

from nbdeploy.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

REMOTE_DEPLOY_DIR = "/opt/netbird"


def _ssh_options(ssh_key, known_hosts=None, connect_timeout=None):
    if known_hosts:
        # Servers are recreated under the same IP; the caller clears stale
        # entries with forget_host_key() before polling.
        opts = ["-o", "StrictHostKeyChecking=accept-new", "-o", f"UserKnownHostsFile={known_hosts}"]
    else:
        opts = ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
    opts += [
        "-o", "BatchMode=yes",
        "-o", "PasswordAuthentication=no",
        "-o", "ServerAliveInterval=60",
        "-o", "ServerAliveCountMax=5",
    ]
    if connect_timeout:
        opts += ["-o", f"ConnectTimeout={int(connect_timeout)}"]
    if ssh_key:
        opts += ["-i", os.path.expanduser(ssh_key)]
    return opts


def ssh_base_args(server, ssh_key, ssh_port, known_hosts=None, connect_timeout=None):
    """Build base SSH arguments."""
    args = ["ssh", *_ssh_options(ssh_key, known_hosts, connect_timeout)]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(server)
    return args


def manual_ssh_command(server, ssh_key=None, ssh_port=22, verbose=True):
    """Copy-pasteable SSH command for operators debugging by hand."""
    parts = ["ssh"]
    if verbose:
        parts.append("-v")
    if ssh_key:
        parts += ["-i", os.path.expanduser(ssh_key)]
    if ssh_port and ssh_port != 22:
        parts += ["-p", str(ssh_port)]
    parts.append(server)
    return shlex.join(parts)


def make_run_cmd(server, ssh_key, ssh_port, known_hosts=None, dry_run=False):
    """Create a run_cmd callable for SSH execution."""

    async def run_cmd(command, timeout=600, log_output=False, input_text=None):
        if dry_run:
            logger.info(f"[dry-run] ssh {server}: {command}")
            return 0, "", ""

        ssh_args = ssh_base_args(server, ssh_key, ssh_port, known_hosts=known_hosts)
        ssh_args.append(command)
        rc, stdout, stderr = await run_shell_cmd(ssh_args, timeout=timeout, input_text=input_text)
        if log_output:
            for line in stdout.splitlines():
                logger.info(line)
            for line in stderr.splitlines():
                logger.error(line)
        return rc, stdout, stderr

    return run_cmd


async def scp_file(local_path, server, ssh_key, ssh_port, remote_path, known_hosts=None, timeout=300):
    """Copy a file to the remote server via SCP."""
    scp_args = ["scp", *_ssh_options(ssh_key, known_hosts)]
    if ssh_port and ssh_port != 22:
        scp_args += ["-P", str(ssh_port)]
    scp_args += [local_path, f"{server}:{remote_path}"]
    rc, _, stderr = await run_shell_cmd(scp_args, timeout=timeout)
    return rc, stderr


def make_write_file(server, ssh_key, ssh_port, known_hosts=None, dry_run=False):
    """Create a write_file callable that SCPs files to the remote server.

    Relative paths land under REMOTE_DEPLOY_DIR.
    """

    async def write_file(path, content, mode=0o644):
        remote_path = path if path.startswith("/") else f"{REMOTE_DEPLOY_DIR}/{path}"
        if dry_run:
            logger.info(f"[dry-run] scp {os.path.basename(path)} -> {server}:{remote_path}")
            return True

        # Write to a temp file locally, then SCP
        with tempfile.NamedTemporaryFile(mode="w", suffix=f"_{os.path.basename(path)}", delete=False) as f:
            f.write(content)
            tmp_path = f.name

        try:
            os.chmod(tmp_path, mode)
            rc, stderr = await scp_file(tmp_path, server, ssh_key, ssh_port, remote_path, known_hosts=known_hosts)
            if rc != 0:
                logger.error(f"Failed to SCP {path} to {server}:{remote_path}: {stderr.strip()}")
                return False
            return True
        finally:
            os.unlink(tmp_path)

    return write_file


async def forget_host_key(host, known_hosts=None, dry_run=False):
    """Remove stale host keys for *host* (the server may have been recreated)."""
    cmd = ["ssh-keygen", "-R", host]
    if known_hosts:
        if not os.path.exists(known_hosts):
            return
        cmd += ["-f", known_hosts]
    rc, _, stderr = await run_shell_cmd(cmd, dry_run=dry_run, timeout=30)
    if rc != 0 and "not found" not in stderr:
        logger.warning(f"Could not clear host key for {host}: {stderr.strip()}")
