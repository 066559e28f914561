"""Nginx SPA routing fix for the NetBird dashboard container.

The dashboard is a single-page app: Azure AD redirects the browser to
``/auth`` and ``/silent-auth``, which nginx must answer with ``index.html``
instead of a 404.
"""

import logging
import shlex

logger = logging.getLogger(__name__)

DEFAULT_CONF = "/etc/nginx/http.d/default.conf"
SPA_FALLBACK = "try_files $uri $uri/ /index.html;"

LIST_CONTAINERS_CMD = "docker ps --format '{{.Names}}'"

# Rewrite the stock ``=404`` fallback in place.
REPLACE_404 = r"s|try_files \$uri \$uri.html \$uri/ =404;|try_files $uri $uri.html $uri/ /index.html;|g"
# No try_files at all: add one after the index directive of ``location /``.
INSERT_FALLBACK = r"/location \/ {/,/}/ s|^\([[:space:]]*\)index .*|&\n\1" + SPA_FALLBACK + "|"


def pick_container(names: str) -> str | None:
    """First container named like nginx, else like dashboard."""
    candidates = [n.strip() for n in names.splitlines() if n.strip()]
    for needle in ("nginx", "dashboard"):
        for name in candidates:
            if needle in name.lower():
                return name
    return None


def _exec(container, *argv):
    return shlex.join(["docker", "exec", container, *argv])


async def apply_nginx_spa_fix(run_cmd, dry_run=False) -> bool:
    """Make the dashboard's nginx fall back to index.html for client routes.

    Idempotent: a config that already falls back to index.html is left alone.
    A config that fails ``nginx -t`` after editing is restored from the backup.

    Args:
        run_cmd: async callable(command, timeout=600, log_output=False) -> (rc, stdout, stderr)
        dry_run: log the commands with placeholder container and file names

    Returns:
        True if the fix is in place.
    """
    rc, names, stderr = await run_cmd(LIST_CONTAINERS_CMD, timeout=60)
    if rc != 0:
        logger.error(f"Docker is not running or SSH access failed: {stderr.strip()}")
        return False
    container = "<dashboard-container>" if dry_run else pick_container(names)
    if container is None:
        logger.error("Could not find an nginx or dashboard container")
        return False
    logger.info(f"Applying nginx SPA routing fix in container {container}...")

    find_conf = _exec(container, "find", "/etc/nginx", "-name", "*.conf", "-exec", "grep", "-l", "location", "{}", "+")
    _, found, _ = await run_cmd(find_conf)
    files = found.split()
    conf = DEFAULT_CONF if dry_run or DEFAULT_CONF in files else (files[0] if files else None)
    if conf is None:
        logger.error("Could not find an nginx config with location blocks")
        return False

    check = _exec(container, "grep", "-q", "try_files.*/index.html", conf)
    if not dry_run:
        rc, _, _ = await run_cmd(check)
        if rc == 0:
            logger.info(f"SPA fix already applied in {conf}")
            return True

    rc, _, stderr = await run_cmd(_exec(container, "cp", conf, f"{conf}.bak"))
    if rc != 0:
        logger.error(f"Could not back up {conf}: {stderr.strip()}")
        return False

    await run_cmd(_exec(container, "sed", "-i", REPLACE_404, conf))
    rc, _, _ = await run_cmd(check)
    if rc != 0:
        await run_cmd(_exec(container, "sed", "-i", INSERT_FALLBACK, conf))

    rc, _, stderr = await run_cmd(_exec(container, "nginx", "-t"))
    if rc != 0:
        logger.error(f"nginx rejected the edited config, restoring backup: {stderr.strip()}")
        await run_cmd(_exec(container, "cp", f"{conf}.bak", conf))
        return False

    rc, _, _ = await run_cmd(_exec(container, "nginx", "-s", "reload"))
    if rc != 0:
        rc, _, stderr = await run_cmd(shlex.join(["docker", "restart", container]), timeout=120)
        if rc != 0:
            logger.error(f"Could not reload nginx: {stderr.strip()}")
            return False
    logger.info(f"Nginx SPA routing fix applied: '{SPA_FALLBACK}' in {conf}")
    return True
