"""setup-env command: render or validate a NetBird setup.env locally."""

import logging
import os
import sys

from nbdeploy.commands import run_command
from nbdeploy.netbird import NetbirdConfig, render_setup_env, validate, validate_setup_env

logger = logging.getLogger(__name__)


def write_secret_file(path, content):
    """Write *content* to *path* readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)


async def _handle_render(args):
    config = NetbirdConfig.from_env(
        os.environ,
        domain=args.domain,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        letsencrypt_email=args.email,
    )
    errors = validate(config)
    if errors:
        for error in errors:
            logger.error(f"Error: {error}")
        return False

    content = render_setup_env(config)
    if args.output == "-":
        sys.stdout.write(content)
        return True
    if args.dry_run:
        logger.info(f"[dry-run] write {args.output} (mode 0600)")
        return True
    write_secret_file(args.output, content)
    logger.info(f"setup.env written to {args.output} (mode 0600)")
    return True


async def _handle_validate(args):
    with open(args.path) as f:
        errors = validate_setup_env(f.read())
    if errors:
        for error in errors:
            logger.error(f"  {error}")
        logger.error(f"{args.path}: {len(errors)} problem(s) found")
        return False
    logger.info(f"{args.path}: OK")
    return True


def handle_render(args):
    """Handle setup-env render."""
    run_command(_handle_render, args)


def handle_validate(args):
    """Handle setup-env validate."""
    run_command(_handle_validate, args)


def register_setup_env_command(subparsers):
    """Register the setup-env subcommand with render/validate actions."""
    parser = subparsers.add_parser("setup-env", help="Render or validate a NetBird setup.env")
    actions = parser.add_subparsers(dest="action", required=True)

    render = actions.add_parser("render", help="Render setup.env from flags and environment variables")
    render.add_argument("--domain", default=None, help="NetBird domain (default: $NETBIRD_DOMAIN)")
    render.add_argument("--tenant-id", default=None, help="Azure AD tenant ID (default: $ENTRA_TENANT_ID / $AZURE_TENANT_ID)")
    render.add_argument("--client-id", default=None, help="SPA app client ID (default: $ENTRA_SPA_CLIENT_ID / $AZURE_CLIENT_ID)")
    render.add_argument("--email", default=None, help="Let's Encrypt contact email (default: $LETSENCRYPT_EMAIL)")
    render.add_argument("-o", "--output", default="setup.env", help="Output path, '-' for stdout (default: setup.env)")
    render.add_argument("--dry-run", action="store_true", help="Validate and report without writing")
    render.set_defaults(func=handle_render)

    check = actions.add_parser("validate", help="Check an existing setup.env")
    check.add_argument("path", nargs="?", default="setup.env", help="File to check (default: setup.env)")
    check.set_defaults(func=handle_validate)
