"""Teardown command: delete a NetBird server and optionally its firewall."""

import asyncio
import logging

import httpx

from nbdeploy.commands import add_readiness_args, install_cancel_handlers, is_interactive, remove_cancel_handlers, run_command
from nbdeploy.netbird import firewall_name, server_name, slugify
from nbdeploy.provisioning import HetznerClient, delete_firewall_by_name, delete_server_by_name, resolve_token
from nbdeploy.provisioning.hetzner import HetznerError
from nbdeploy.readiness import DeploymentTarget, ProbeResult, Ready, RetryPolicy, poll

logger = logging.getLogger(__name__)

CONFIRM_WORD = "DELETE"

# Hetzner deletes servers asynchronously; the firewall stays attached until then.
SERVER_DELETE_POLICY = RetryPolicy(max_attempts=60, interval=3, total_timeout=180, attempt_timeout=15)


class ServerDeleted:
    """Ready once the server no longer appears in the API listing."""

    name = "server-delete"

    def __init__(self, client: HetznerClient):
        self.client = client

    async def __call__(self, target: DeploymentTarget) -> ProbeResult:
        try:
            server = await self.client.find_server(target.server_name)
        except HetznerError as e:
            return ProbeResult.waiting(f"API error {e.status} ({e.code}): {e.message}")
        except httpx.HTTPError as e:
            return ProbeResult.waiting(f"API unreachable: {e}")
        if server is None:
            return ProbeResult.ok("deleted")
        return ProbeResult.waiting(f"still listed with status '{server.get('status', 'unknown')}'")

    def describe(self, target: DeploymentTarget) -> str:
        return f"hcloud server describe {target.server_name}"


async def wait_for_server_deletion(client: HetznerClient, name, policy=SERVER_DELETE_POLICY, cancel=None) -> bool:
    """Block until server *name* is gone. Returns False on timeout or cancel."""
    outcome = await poll(ServerDeleted(client), policy, DeploymentTarget(server_name=name), cancel=cancel)
    if isinstance(outcome, Ready):
        return True
    logger.error(f"Server '{name}' still exists: {outcome.detail}")
    return False


def _read_confirmation(prompt: str) -> str:
    try:
        return input(prompt)
    except EOFError:
        return ""


async def confirm_deletion(names, interactive: bool, assume_yes: bool, read=_read_confirmation) -> bool:
    """Require the operator to type DELETE unless --yes was given."""
    if assume_yes:
        return True
    if not interactive:
        logger.error("Refusing to delete without confirmation; pass --yes in non-interactive runs.")
        return False
    logger.warning("About to permanently delete: " + ", ".join(names))
    reply = await asyncio.to_thread(read, f"Type {CONFIRM_WORD} to confirm: ")
    if reply.strip() != CONFIRM_WORD:
        logger.error("Teardown aborted.")
        return False
    return True


async def _handle_teardown(args, policy=SERVER_DELETE_POLICY):
    slug = slugify(args.customer) if args.customer else ""
    name = args.server_name or server_name(slug)
    fw_name = (args.firewall_name or firewall_name(slug)) if args.firewall else None
    client = HetznerClient(resolve_token(dry_run=args.dry_run), dry_run=args.dry_run)

    if not args.dry_run:
        doomed = [f"server '{name}'"] + ([f"firewall '{fw_name}'"] if fw_name else [])
        if not await confirm_deletion(doomed, is_interactive(args), args.yes):
            return False

    ok = await delete_server_by_name(client, name)
    if fw_name is not None:
        if ok and not args.dry_run:
            cancel = asyncio.Event()
            handled = install_cancel_handlers(cancel)
            try:
                logger.info(f"Waiting for server '{name}' to be deleted before removing the firewall...")
                ok = await wait_for_server_deletion(client, name, policy=policy, cancel=cancel)
            finally:
                remove_cancel_handlers(handled)
            if not ok:
                logger.error(f"Firewall '{fw_name}' left in place; rerun teardown --firewall once the server is gone.")
                return False
        ok = await delete_firewall_by_name(client, fw_name) and ok

    if ok:
        logger.info("Teardown complete.")
    return ok


def handle_teardown(args):
    """Handle the teardown command."""
    run_command(_handle_teardown, args)


def register_teardown_command(subparsers):
    """Register the teardown subcommand."""
    parser = subparsers.add_parser("teardown", help="Delete a NetBird server (and firewall)")
    parser.add_argument("--customer", default=None, help="Customer name used at deploy time")
    parser.add_argument("--server-name", default=None, help="Server name (default: netbird-selfhosted-<customer>)")
    parser.add_argument("--firewall", action="store_true", help="Also delete the NetBird firewall")
    parser.add_argument("--firewall-name", default=None, help="Firewall name (default: <customer>-netbird-firewall)")
    parser.add_argument("--yes", action="store_true", help=f"Skip the {CONFIRM_WORD} confirmation prompt")
    parser.add_argument("--dry-run", action="store_true", help="Print API requests without executing")
    add_readiness_args(parser)
    parser.set_defaults(func=handle_teardown)
