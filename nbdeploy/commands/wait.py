"""Wait command: re-run readiness stages against an existing deployment."""

import logging
import os

from nbdeploy.commands import (
    add_common_args,
    add_readiness_args,
    add_ssh_args,
    is_interactive,
    run_command,
    run_readiness,
)
from nbdeploy.config import load_config, netbird_settings
from nbdeploy.provisioning import HetznerClient
from nbdeploy.provisioning.hetzner import TOKEN_ENV_VAR
from nbdeploy.readiness import DeploymentTarget, resolve_policies
from nbdeploy.readiness.policies import SERVER_BOOT, STAGE_NAMES
from nbdeploy.stages import build_stages, select_stages

logger = logging.getLogger(__name__)


async def _handle_wait(args):
    dry_run = args.dry_run
    config = load_config(args.config)
    policies = resolve_policies(config)
    min_running = args.min_running or netbird_settings(config)["min_running_services"]

    token = os.environ.get(TOKEN_ENV_VAR, "")
    client = None
    if args.server_name and (token or dry_run):
        client = HetznerClient(token, dry_run=dry_run)
    elif not args.ip:
        logger.error(f"Error: pass --ip, or --server-name with {TOKEN_ENV_VAR} set to look the server up.")
        return False

    requested = args.stages or list(STAGE_NAMES)
    if SERVER_BOOT in requested and client is None:
        if args.stages:
            logger.error(f"Error: stage '{SERVER_BOOT}' needs --server-name and {TOKEN_ENV_VAR}.")
            return False
        requested = [s for s in requested if s != SERVER_BOOT]

    domain = args.domain or os.environ.get("NETBIRD_DOMAIN") or None
    target = DeploymentTarget(
        server_name=args.server_name or args.ip,
        domain=domain,
        address=args.ip,
        ssh_user=args.ssh_user,
        ssh_port=args.ssh_port,
        ssh_key=args.ssh_key,
        known_hosts=args.known_hosts,
    )
    stages = build_stages(
        policies,
        client=client,
        min_running=min_running,
        with_domain=domain is not None,
        server_created=False,
        dry_run=dry_run,
    )
    available = {stage.name for stage in stages}
    if domain is None:
        skipped = [s for s in requested if s not in available]
        if skipped and args.stages:
            logger.error(f"Error: stage(s) {', '.join(skipped)} need --domain.")
            return False
    stages = select_stages(stages, [s for s in requested if s in available])

    logger.info(f"Waiting for {', '.join(s.name for s in stages)} on {target.address or target.server_name}")
    result = await run_readiness(stages, target, is_interactive(args))
    return result.succeeded


def handle_wait(args):
    """Handle the wait command."""
    run_command(_handle_wait, args)


def register_wait_command(subparsers):
    """Register the wait subcommand."""
    parser = subparsers.add_parser("wait", help="Wait for an existing deployment to become ready")
    parser.add_argument("--server-name", default=None, help="Hetzner server name (needed for the server-boot stage)")
    parser.add_argument("--ip", default=None, help="Server public IPv4 (skips the API lookup)")
    parser.add_argument("--domain", default=None, help="NetBird domain (default: $NETBIRD_DOMAIN)")
    parser.add_argument(
        "--stages",
        nargs="+",
        choices=STAGE_NAMES,
        default=None,
        help="Stages to run (default: all that apply)",
    )
    parser.add_argument("--min-running", type=int, default=None, help="Containers required for services-started (default: 4)")
    add_ssh_args(parser)
    add_readiness_args(parser)
    add_common_args(parser)
    parser.set_defaults(func=handle_wait)
