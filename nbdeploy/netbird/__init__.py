"""NetBird-specific configuration, firewall rules and install steps."""

from nbdeploy.netbird.firewall import (
    NETBIRD_FIREWALL_RULES,
    firewall_name,
    server_labels,
    server_name,
    slugify,
)
from nbdeploy.netbird.install import ARTIFACTS_DIR, install_netbird
from nbdeploy.netbird.setup_env import (
    NetbirdConfig,
    parse_setup_env,
    render_setup_env,
    validate,
    validate_setup_env,
)
from nbdeploy.netbird.spa_fix import apply_nginx_spa_fix

__all__ = [
    "ARTIFACTS_DIR",
    "NETBIRD_FIREWALL_RULES",
    "NetbirdConfig",
    "apply_nginx_spa_fix",
    "firewall_name",
    "install_netbird",
    "parse_setup_env",
    "render_setup_env",
    "server_labels",
    "server_name",
    "slugify",
    "validate",
    "validate_setup_env",
]
