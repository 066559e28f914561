"""Deploy command: provision a Hetzner server, install NetBird, wait until usable."""

import logging
import os
from datetime import date

from nbdeploy.commands import (
    add_common_args,
    add_readiness_args,
    add_ssh_args,
    is_interactive,
    run_command,
    run_readiness,
)
from nbdeploy.config import hetzner_settings, load_config, netbird_settings
from nbdeploy.netbird import (
    NETBIRD_FIREWALL_RULES,
    NetbirdConfig,
    firewall_name,
    install_netbird,
    server_labels,
    server_name,
    slugify,
    validate,
)
from nbdeploy.provisioning import (
    HetznerClient,
    ServerSpec,
    ensure_firewall,
    ensure_server,
    ensure_ssh_key,
    make_run_cmd,
    make_write_file,
    resolve_token,
)
from nbdeploy.readiness import DeploymentTarget, resolve_policies
from nbdeploy.redact import register_secret
from nbdeploy.stages import build_stages

logger = logging.getLogger(__name__)

DRY_RUN_PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIDryRunPlaceholderKeyOnly nbdeploy-dry-run"


def read_public_key(ssh_key, dry_run=False):
    """Read ``<ssh_key>.pub``.

    Raises:
        FileNotFoundError: if the public key is missing (outside dry-run).
    """
    path = os.path.expanduser(f"{ssh_key}.pub")
    if not os.path.isfile(path):
        if dry_run:
            logger.info(f"[dry-run] {path} not found, using a placeholder key")
            return DRY_RUN_PUBLIC_KEY
        raise FileNotFoundError(f"SSH public key not found: {path}")
    with open(path) as f:
        return f.read().strip()


def make_installer(netbird_config, dry_run=False):
    """Return the services-started prepare step: install NetBird over SSH."""

    async def install(target):
        logger.info(f"Installing NetBird on {target.ssh_address}...")
        run_cmd = make_run_cmd(target.ssh_address, target.ssh_key, target.ssh_port, target.known_hosts, dry_run=dry_run)
        write_file = make_write_file(target.ssh_address, target.ssh_key, target.ssh_port, target.known_hosts, dry_run=dry_run)
        return await install_netbird(run_cmd, write_file, netbird_config, dry_run=dry_run)

    return install


def log_next_steps(target: DeploymentTarget):
    logger.info("")
    logger.info(f"NetBird dashboard: https://{target.domain}")
    logger.info(f"Server:            {target.server_name} ({target.address})")
    logger.info("Azure AD redirect URIs to register for the SPA app:")
    logger.info(f"  https://{target.domain}/auth")
    logger.info(f"  https://{target.domain}/silent-auth")


async def _handle_deploy(args):
    dry_run = args.dry_run
    config = load_config(args.config)
    policies = resolve_policies(config)
    hetzner = hetzner_settings(
        config,
        server_type=args.server_type,
        image=args.image,
        location=args.location,
        ssh_key_name=args.ssh_key_name,
    )
    min_running = netbird_settings(config)["min_running_services"]

    netbird_config = NetbirdConfig.from_env(
        os.environ,
        domain=args.domain,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        letsencrypt_email=args.email,
    )
    errors = validate(netbird_config)
    if errors:
        for error in errors:
            logger.error(f"Error: {error}")
        return False
    register_secret(netbird_config.mgmt_client_secret)
    if not netbird_config.has_management_credentials:
        logger.warning("Management API credentials (ENTRA_MGMT_*) not set; user sync with Azure AD will be disabled.")

    slug = slugify(args.customer) if args.customer else ""
    name = args.server_name or server_name(slug)
    labels = server_labels(slug, created=date.today().isoformat())

    client = HetznerClient(resolve_token(dry_run=dry_run), dry_run=dry_run)

    logger.info(f"Deploying NetBird for {netbird_config.domain} on server '{name}'")
    public_key = read_public_key(args.ssh_key, dry_run=dry_run)
    key_name = await ensure_ssh_key(client, hetzner["ssh_key_name"], public_key)
    fw_name = args.firewall_name or firewall_name(slug)
    firewall_id = await ensure_firewall(client, fw_name, NETBIRD_FIREWALL_RULES, labels=labels)

    spec = ServerSpec(
        name=name,
        server_type=hetzner["server_type"],
        image=hetzner["image"],
        location=hetzner["location"],
        ssh_keys=[key_name],
        firewall=fw_name,
        labels=labels,
    )
    server = await ensure_server(client, spec, firewall_id=firewall_id)

    target = DeploymentTarget(
        server_name=name,
        server_id=server.id or None,
        domain=netbird_config.domain,
        ssh_user=args.ssh_user,
        ssh_port=args.ssh_port,
        ssh_key=args.ssh_key,
        known_hosts=args.known_hosts,
    )
    stages = build_stages(
        policies,
        client=client,
        install=None if args.skip_install else make_installer(netbird_config, dry_run=dry_run),
        min_running=min_running,
        forget_host_keys=server.created,
        server_created=server.created,
        dry_run=dry_run,
    )

    result = await run_readiness(stages, target, is_interactive(args))
    if result.succeeded:
        log_next_steps(target)
    return result.succeeded


def handle_deploy(args):
    """Handle the deploy command."""
    run_command(_handle_deploy, args)


def register_deploy_command(subparsers):
    """Register the deploy subcommand."""
    parser = subparsers.add_parser("deploy", help="Provision a server and deploy NetBird")
    parser.add_argument("--domain", default=None, help="NetBird domain (default: $NETBIRD_DOMAIN)")
    parser.add_argument("--tenant-id", default=None, help="Azure AD tenant ID (default: $ENTRA_TENANT_ID / $AZURE_TENANT_ID)")
    parser.add_argument("--client-id", default=None, help="SPA app client ID (default: $ENTRA_SPA_CLIENT_ID / $AZURE_CLIENT_ID)")
    parser.add_argument("--email", default=None, help="Let's Encrypt contact email (default: $LETSENCRYPT_EMAIL)")
    parser.add_argument("--customer", default=None, help="Customer name, used to derive server and firewall names")
    parser.add_argument("--server-name", default=None, help="Server name (default: netbird-selfhosted-<customer>)")
    parser.add_argument("--firewall-name", default=None, help="Firewall name (default: <customer>-netbird-firewall)")
    parser.add_argument("--server-type", default=None, help="Hetzner server type (default: cax11)")
    parser.add_argument("--location", default=None, help="Hetzner location (default: nbg1)")
    parser.add_argument("--image", default=None, help="Server image (default: ubuntu-24.04)")
    parser.add_argument("--ssh-key-name", default=None, help="Name of the SSH key in Hetzner Cloud (default: netbird-deploy)")
    parser.add_argument("--skip-install", action="store_true", help="Only wait for services; do not (re)install NetBird")
    add_ssh_args(parser)
    add_readiness_args(parser)
    add_common_args(parser)
    parser.set_defaults(func=handle_deploy)
