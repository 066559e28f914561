"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest

from nbdeploy.readiness import DeploymentTarget

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))

# Secrets and IdP settings the CLI would otherwise pick up from the developer's shell
_CLI_ENV_VARS = [
    "HCLOUD_TOKEN",
    "NETBIRD_DOMAIN",
    "ENTRA_TENANT_ID",
    "AZURE_TENANT_ID",
    "ENTRA_SPA_CLIENT_ID",
    "AZURE_CLIENT_ID",
    "LETSENCRYPT_EMAIL",
    "ENTRA_MGMT_CLIENT_ID",
    "ENTRA_MGMT_CLIENT_SECRET",
    "ENTRA_MGMT_OBJECT_ID",
    "AZURE_CLIENT_SECRET",
]

TENANT_ID = "11111111-2222-3333-4444-555555555555"
CLIENT_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the nbdeploy CLI as a subprocess.

    Pass ``cwd`` to run outside the project root (e.g. to pick up a local
    nbdeploy.yaml).
    """

    def _run(*args, env=None, cwd=None, input_text=None):
        full_env = {k: v for k, v in os.environ.items() if k not in _CLI_ENV_VARS}
        full_env["PYTHONPATH"] = project_root + os.pathsep + full_env.get("PYTHONPATH", "")
        full_env.update(env or {})
        result = subprocess.run(
            [sys.executable, "-m", "nbdeploy.nbdeploy", *args],
            capture_output=True,
            text=True,
            cwd=cwd or project_root,
            env=full_env,
            input=input_text,
            timeout=120,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


@pytest.fixture
def netbird_env():
    """Minimal valid IdP environment for deploy/setup-env commands."""
    return {
        "NETBIRD_DOMAIN": "netbird.example.com",
        "ENTRA_TENANT_ID": TENANT_ID,
        "ENTRA_SPA_CLIENT_ID": CLIENT_ID,
        "LETSENCRYPT_EMAIL": "admin@example.com",
    }


# ── Unit-test fixtures ──────────────────────────────────────────────


@pytest.fixture
def target():
    """A deployment target whose address is already known."""
    return DeploymentTarget(
        server_name="netbird-selfhosted-acme",
        domain="netbird.example.com",
        address="198.51.100.7",
        ssh_key="~/.ssh/id_ed25519",
    )


class ScriptedProbe:
    """Probe double returning a fixed sequence of results.

    The last result repeats once the script is exhausted.
    """

    name = "scripted"

    def __init__(self, results, on_call=None):
        self.results = list(results)
        self.calls = 0
        self.on_call = on_call

    async def __call__(self, target):
        self.calls += 1
        if self.on_call is not None:
            self.on_call(target)
        index = min(self.calls, len(self.results)) - 1
        return self.results[index]

    def describe(self, target):
        return f"check-by-hand {target.server_name}"


@pytest.fixture
def scripted_probe():
    """Factory for ScriptedProbe instances."""
    return ScriptedProbe
