"""Server provisioning: Hetzner Cloud API, shell and SSH helpers."""

from nbdeploy.provisioning.hetzner import (
    HetznerClient,
    HetznerError,
    delete_firewall_by_name,
    delete_server_by_name,
    ensure_firewall,
    ensure_server,
    ensure_ssh_key,
    resolve_token,
)
from nbdeploy.provisioning.shell import run_shell_cmd
from nbdeploy.provisioning.ssh_transport import (
    REMOTE_DEPLOY_DIR,
    forget_host_key,
    make_run_cmd,
    make_write_file,
    manual_ssh_command,
    scp_file,
    ssh_base_args,
)
from nbdeploy.provisioning.types import ServerInfo, ServerSpec

__all__ = [
    "HetznerClient",
    "HetznerError",
    "ServerInfo",
    "ServerSpec",
    "REMOTE_DEPLOY_DIR",
    "delete_firewall_by_name",
    "delete_server_by_name",
    "ensure_firewall",
    "ensure_server",
    "ensure_ssh_key",
    "forget_host_key",
    "make_run_cmd",
    "make_write_file",
    "manual_ssh_command",
    "resolve_token",
    "run_shell_cmd",
    "scp_file",
    "ssh_base_args",
]
