"""Install and start the NetBird control plane on a provisioned server."""

import logging

from nbdeploy.netbird.setup_env import NetbirdConfig, render_setup_env
from nbdeploy.netbird.spa_fix import apply_nginx_spa_fix
from nbdeploy.provisioning.ssh_transport import REMOTE_DEPLOY_DIR

logger = logging.getLogger(__name__)

NETBIRD_REPO = "https://github.com/netbirdio/netbird/"
INFRA_DIR = f"{REMOTE_DEPLOY_DIR}/netbird/infrastructure_files"
ARTIFACTS_DIR = f"{INFRA_DIR}/artifacts"

REQUIRED_TOOLS = ("curl", "wget", "git", "jq", "docker")
APT_PACKAGES = "curl wget git jq docker.io docker-compose-v2"

INSTALL_DEPS_CMD = (
    "if " + " && ".join(f"command -v {tool} >/dev/null" for tool in REQUIRED_TOOLS) + "; then echo present; else "
    "export DEBIAN_FRONTEND=noninteractive && apt-get update -qq && "
    f"apt-get install -y -qq {APT_PACKAGES} && systemctl enable --now docker; fi"
)

FETCH_NETBIRD_CMD = (
    f"mkdir -p {REMOTE_DEPLOY_DIR} && cd {REMOTE_DEPLOY_DIR} && "
    "if [ -d netbird/.git ]; then echo present; else "
    f"TAG=$(basename $(curl -fs -o /dev/null -w '%{{redirect_url}}' {NETBIRD_REPO}releases/latest)) && "
    f'git clone --depth 1 --branch "$TAG" {NETBIRD_REPO}; fi'
)


async def install_netbird(run_cmd, write_file, config: NetbirdConfig, dry_run=False):
    """Prepare the server and bring the NetBird stack up.

    Args:
        run_cmd: async callable(command, timeout=600, log_output=False) -> (rc, stdout, stderr)
        write_file: async callable(path, content, mode=0o644) -> bool
        config: identity-provider settings rendered into setup.env
        dry_run: only log what would be done

    Returns:
        True if every step succeeded.
    """
    setup_env = render_setup_env(config)

    logger.info("Installing Docker and tools (skipped when already present)...")
    rc, _, _ = await run_cmd(INSTALL_DEPS_CMD, timeout=900, log_output=True)
    if rc != 0:
        logger.error("Failed to install dependencies")
        return False

    logger.info("Fetching NetBird infrastructure files...")
    rc, _, _ = await run_cmd(FETCH_NETBIRD_CMD, timeout=600, log_output=True)
    if rc != 0:
        logger.error("Failed to fetch the NetBird repository")
        return False

    logger.info("Writing setup.env...")
    if not await write_file(f"{INFRA_DIR}/setup.env", setup_env, mode=0o600):
        logger.error("Failed to write setup.env")
        return False
    await run_cmd(f"chmod 600 {INFRA_DIR}/setup.env")

    logger.info("Running configure.sh...")
    rc, _, _ = await run_cmd(f"cd {INFRA_DIR} && chmod +x configure.sh && ./configure.sh", timeout=600, log_output=True)
    if rc != 0:
        logger.error("configure.sh failed")
        return False

    logger.info("Starting NetBird services...")
    rc, _, _ = await run_cmd(f"cd {ARTIFACTS_DIR} && docker compose up -d", timeout=1800, log_output=True)
    if rc != 0:
        logger.error("Failed to start NetBird services")
        return False

    if not await apply_nginx_spa_fix(run_cmd, dry_run=dry_run):
        logger.warning("Dashboard routes /auth and /silent-auth may 404; retry with: nbdeploy manage spa-fix")

    if dry_run:
        logger.info("[dry-run] NetBird install steps logged, nothing executed")
    return True
