"""Manage command: day-2 operations on a deployed NetBird server."""

import logging
import os
import shlex
from datetime import datetime

from nbdeploy.commands import add_common_args, add_ssh_args, run_command
from nbdeploy.config import load_config, netbird_settings
from nbdeploy.netbird import ARTIFACTS_DIR, apply_nginx_spa_fix, server_name, slugify
from nbdeploy.provisioning import HetznerClient, ServerInfo, make_run_cmd, resolve_token
from nbdeploy.provisioning.hetzner import DRY_RUN_IPV4, TOKEN_ENV_VAR
from nbdeploy.provisioning.ssh_transport import REMOTE_DEPLOY_DIR

logger = logging.getLogger(__name__)

BACKUP_ROOT = f"{REMOTE_DEPLOY_DIR}/backups"
BACKUP_FILES = ("docker-compose.yml", "turnserver.conf", "management.json")

SERVICES_CMD = (
    f"cd {ARTIFACTS_DIR} && docker compose ps && "
    "docker stats --no-stream --format 'table {{.Name}}\\t{{.CPUPerc}}\\t{{.MemUsage}}\\t{{.NetIO}}'"
)
RUNNING_COUNT_CMD = f"cd {ARTIFACTS_DIR} && docker compose ps --filter status=running --quiet | wc -l"


def compose_cmd(*argv) -> str:
    """``docker compose`` in the artifacts directory."""
    return f"cd {ARTIFACTS_DIR} && " + shlex.join(["docker", "compose", *argv])


def backup_cmd(backup_dir) -> str:
    """Copy config and the management database; management is restarted even if copying fails."""
    dest = shlex.quote(backup_dir)
    files = " ".join(BACKUP_FILES)
    return (
        f"cd {ARTIFACTS_DIR} && mkdir -p {dest} && docker compose stop management && "
        f"{{ cp {files} {dest}/ && docker compose cp -a management:/var/lib/netbird/ {dest}/; rc=$?; "
        f"docker compose start management; exit $rc; }}"
    )


class ManagedServer:
    """A deployed server located by name (API) or by address (--ip)."""

    def __init__(self, name, info: ServerInfo | None, client: HetznerClient | None, run_cmd, raw: dict | None = None):
        self.name = name
        self.raw = raw or {}
        self.info = info
        self.client = client
        self.run_cmd = run_cmd

    @property
    def status(self):
        return self.info.status if self.info is not None else "unknown"


async def locate_server(args, need_api=False) -> ManagedServer | None:
    """Resolve the target server; None (after logging why) if it cannot be used."""
    slug = slugify(args.customer) if args.customer else ""
    name = args.server_name or server_name(slug)
    dry_run = args.dry_run

    client = None
    info = None
    raw = None
    if need_api or not args.ip:
        client = HetznerClient(resolve_token(dry_run=dry_run), dry_run=dry_run)
        raw = await client.find_server(name)
        if raw is not None:
            info = ServerInfo.from_api(raw)
        elif dry_run:
            info = ServerInfo(id=0, name=name, status="running", ipv4=DRY_RUN_IPV4)
        else:
            logger.error(f"NetBird server '{name}' not found.")
            return None

    address = args.ip or (info.ipv4 if info is not None else None)
    run_cmd = None
    if address:
        host = f"{args.ssh_user}@{address}" if args.ssh_user else address
        run_cmd = make_run_cmd(host, args.ssh_key, args.ssh_port, args.known_hosts, dry_run=dry_run)
    return ManagedServer(name, info, client, run_cmd, raw=raw)


def _require_ssh(server: ManagedServer) -> bool:
    if server.info is not None and server.status != "running":
        logger.error(f"Server is not running (status: {server.status})")
        return False
    if server.run_cmd is None:
        logger.error(f"Server '{server.name}' has no public IPv4 yet.")
        return False
    return True


# ── Actions ─────────────────────────────────────────────────────────


async def show_info(server: ManagedServer, min_running: int) -> bool:
    raw = server.raw
    logger.info("=== NetBird Self-Hosted Server Information ===")
    logger.info(f"Name:     {server.name}")
    logger.info(f"Status:   {server.status}")
    logger.info(f"Type:     {(raw.get('server_type') or {}).get('name', '')}")
    logger.info(f"Location: {((raw.get('datacenter') or {}).get('location') or {}).get('name', '')}")
    logger.info(f"IPv4:     {server.info.ipv4 if server.info else ''}")
    logger.info(f"Created:  {raw.get('created', '')}")
    if server.status != "running" or server.run_cmd is None:
        return True

    rc, _, _ = await server.run_cmd("echo ok", timeout=15)
    if rc != 0:
        logger.warning("SSH: cannot connect")
        return True
    logger.info("SSH:      connected")

    rc, stdout, _ = await server.run_cmd(RUNNING_COUNT_CMD, timeout=30)
    running = int(stdout.strip()) if rc == 0 and stdout.strip().isdigit() else 0
    if running >= min_running:
        logger.info(f"Services: {running} running")
    else:
        logger.warning(f"Services: some may be down ({running}/{min_running} running)")
    return True


async def show_services(server: ManagedServer) -> bool:
    rc, _, _ = await server.run_cmd(SERVICES_CMD, timeout=60, log_output=True)
    return rc == 0


async def show_logs(server: ManagedServer, service=None, tail=50) -> bool:
    argv = ["logs", f"--tail={tail}"] + ([service] if service else [])
    logger.info(f"NetBird logs for: {service or 'all services'}")
    rc, _, _ = await server.run_cmd(compose_cmd(*argv), timeout=120, log_output=True)
    return rc == 0


async def restart_services(server: ManagedServer, service=None) -> bool:
    logger.info(f"Restarting {service or 'NetBird services'}...")
    rc, _, _ = await server.run_cmd(compose_cmd("restart", *([service] if service else [])), timeout=300, log_output=True)
    if rc != 0:
        logger.error("Restart failed")
        return False
    await server.run_cmd(compose_cmd("ps"), timeout=60, log_output=True)
    logger.info("NetBird services restarted")
    return True


async def power(server: ManagedServer, on: bool) -> bool:
    wanted, action = ("running", "poweron") if on else ("off", "poweroff")
    if server.status == wanted:
        logger.warning(f"Server is already {'running' if on else 'stopped'}")
        return True
    await server.client.server_action(server.info.id or "<id>", action)
    logger.info(f"Server {'start' if on else 'stop'} command sent")
    return True


async def backup(server: ManagedServer, now=None) -> bool:
    name = f"netbird-backup-{(now or datetime.now()).strftime('%Y%m%d-%H%M%S')}"
    backup_dir = f"{BACKUP_ROOT}/{name}"
    logger.info(f"Creating NetBird backup: {name}")
    rc, _, _ = await server.run_cmd(backup_cmd(backup_dir), timeout=600, log_output=True)
    if rc != 0:
        logger.error("Backup failed (management service restarted)")
        return False
    logger.info(f"Backup created at {backup_dir}")
    return True


# ── CLI ─────────────────────────────────────────────────────────────


async def _handle_manage(args):
    action = args.action
    need_api = action in ("info", "start", "stop")
    if not need_api and not args.ip and not args.dry_run and not os.environ.get(TOKEN_ENV_VAR):
        logger.error(f"Error: pass --ip, or set {TOKEN_ENV_VAR} to look the server up by name.")
        return False

    server = await locate_server(args, need_api=need_api)
    if server is None:
        return False

    if action == "info":
        min_running = netbird_settings(load_config(args.config))["min_running_services"]
        return await show_info(server, min_running)
    if action == "start":
        return await power(server, on=True)
    if action == "stop":
        return await power(server, on=False)

    if not _require_ssh(server):
        return False
    if action == "services":
        return await show_services(server)
    if action == "logs":
        return await show_logs(server, args.service, args.tail)
    if action == "restart":
        return await restart_services(server, args.service)
    if action == "backup":
        return await backup(server)
    if action == "spa-fix":
        return await apply_nginx_spa_fix(server.run_cmd, dry_run=args.dry_run)
    raise ValueError(f"Unknown manage action '{action}'")


def handle_manage(args):
    """Handle the manage command."""
    run_command(_handle_manage, args)


def register_manage_command(subparsers):
    """Register the manage subcommand and its actions."""
    parser = subparsers.add_parser("manage", help="Operate a deployed NetBird server")
    actions = parser.add_subparsers(dest="action", required=True)

    helps = {
        "info": "Show server details, SSH reachability and running service count",
        "services": "Show docker compose status and resource usage",
        "logs": "Show recent service logs",
        "restart": "Restart NetBird services",
        "start": "Power on the server",
        "stop": "Power off the server",
        "backup": "Back up configuration and the management database on the server",
        "spa-fix": "Make the dashboard serve index.html for /auth and /silent-auth",
    }
    for action, help_text in helps.items():
        sub = actions.add_parser(action, help=help_text)
        sub.add_argument("--customer", default=None, help="Customer name used at deploy time")
        sub.add_argument("--server-name", default=None, help="Server name (default: netbird-selfhosted-<customer>)")
        sub.add_argument("--ip", default=None, help="Server address; skips the API lookup for SSH actions")
        if action in ("logs", "restart"):
            sub.add_argument("service", nargs="?", default=None, help="management, signal, relay, coturn or dashboard")
        if action == "logs":
            sub.add_argument("--tail", type=int, default=50, help="Lines per service (default: 50)")
        add_ssh_args(sub)
        add_common_args(sub)
        sub.set_defaults(func=handle_manage)
