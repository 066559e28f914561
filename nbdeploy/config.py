"""YAML configuration file loading."""

import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "nbdeploy.yaml"

SECTIONS = ("hetzner", "readiness", "netbird")

HETZNER_DEFAULTS = {
    "server_type": "cax11",
    "image": "ubuntu-24.04",
    "location": "nbg1",
    "ssh_key_name": "netbird-deploy",
}

NETBIRD_DEFAULTS = {
    "min_running_services": 4,
}


class ConfigError(ValueError):
    """Configuration file is missing, unparsable, or has unknown sections."""


def load_config(config_path=None) -> dict:
    """Load configuration from a YAML file.

    With no path, ``nbdeploy.yaml`` in the working directory is used when it
    exists; otherwise an empty config is returned.

    Raises:
        ConfigError: on a missing explicit file, invalid YAML or unknown
            top-level sections.
    """
    if config_path is None:
        if not os.path.exists(DEFAULT_CONFIG_FILE):
            return {}
        config_path = DEFAULT_CONFIG_FILE

    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file '{config_path}' not found.") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config '{config_path}': {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Config file '{config_path}' must contain a mapping at the top level.")

    unknown = set(config) - set(SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config section(s) in '{config_path}': {', '.join(sorted(unknown))}")
    for section in SECTIONS:
        if config.get(section) is not None and not isinstance(config[section], dict):
            raise ConfigError(f"Config section '{section}' must be a mapping.")

    logger.debug(f"Loaded config from {config_path}")
    return config


def _section(config, name, defaults):
    values = dict(defaults)
    values.update(config.get(name) or {})
    unknown = set(values) - set(defaults)
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}' section: {', '.join(sorted(unknown))}")
    return values


def hetzner_settings(config: dict, **overrides) -> dict:
    """Hetzner server settings: defaults, then the file, then non-None overrides."""
    values = _section(config, "hetzner", HETZNER_DEFAULTS)
    values.update({k: v for k, v in overrides.items() if v is not None})
    return values


def netbird_settings(config: dict) -> dict:
    return _section(config, "netbird", NETBIRD_DEFAULTS)
