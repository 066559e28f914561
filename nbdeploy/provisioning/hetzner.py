"""Hetzner Cloud provider: servers, firewalls and SSH keys via the REST API."""

import json
import logging
import os

import httpx

from nbdeploy.provisioning.types import ServerInfo, ServerSpec

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.hetzner.cloud/v1"
TOKEN_ENV_VAR = "HCLOUD_TOKEN"

# Placeholder address used in dry-run mode (TEST-NET-3, never routable).
DRY_RUN_IPV4 = "203.0.113.10"


class HetznerError(RuntimeError):
    """Error response from the Hetzner Cloud API."""

    def __init__(self, status, code, message):
        super().__init__(f"Hetzner API error {status} ({code}): {message}")
        self.status = status
        self.code = code
        self.message = message


def resolve_token(token=None, dry_run=False):
    """Return the API token from the argument or HCLOUD_TOKEN.

    Raises:
        RuntimeError: if no token is available outside dry-run mode.
    """
    token = token or os.environ.get(TOKEN_ENV_VAR, "")
    if not token and not dry_run:
        raise RuntimeError(f"{TOKEN_ENV_VAR} env var required for Hetzner Cloud provisioning")
    return token


class HetznerClient:
    """Thin async wrapper over the Hetzner Cloud API.

    Args:
        token: API token (Bearer).
        api_url: base URL, overridable for tests.
        dry_run: log requests that would mutate state instead of sending them.
        transport: optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(self, token, api_url=DEFAULT_API_URL, dry_run=False, transport=None, timeout=30):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.dry_run = dry_run
        self.transport = transport
        self.timeout = timeout

    async def _request(self, method, path, data=None, params=None):
        """Make an authenticated API request.

        Returns:
            Parsed JSON body (``{}`` for empty responses), or ``None`` for a
            mutating request in dry-run mode.

        Raises:
            HetznerError: on a non-2xx response.
            httpx.TransportError: on network failures.
        """
        url = f"{self.api_url}{path}"
        if self.dry_run and method != "GET":
            logger.info(f"[dry-run] {method} {url}")
            if data is not None:
                logger.info(f"[dry-run] payload: {json.dumps(data, indent=2)}")
            return None

        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            resp = await client.request(method, url, json=data, params=params, headers=headers)

        if resp.status_code >= 400:
            try:
                error = resp.json().get("error", {})
            except ValueError:
                error = {}
            raise HetznerError(resp.status_code, error.get("code", "unknown"), error.get("message", resp.text))
        if not resp.content:
            return {}
        return resp.json()

    async def _get(self, path, params=None):
        if self.dry_run and not self.token:
            logger.info(f"[dry-run] GET {self.api_url}{path}")
            return None
        return await self._request("GET", path, params=params)

    # ── Servers ───────────────────────────────────────────────────

    async def get_server(self, server_id):
        """GET /servers/{id}. Returns the server dict."""
        body = await self._get(f"/servers/{server_id}")
        return None if body is None else body["server"]

    async def find_server(self, name):
        """Return the server dict named *name*, or None."""
        body = await self._get("/servers", params={"name": name})
        servers = (body or {}).get("servers", [])
        return servers[0] if servers else None

    async def create_server(self, spec: ServerSpec, firewall_id=None):
        """POST /servers. Returns the created server dict (None in dry-run)."""
        data = {
            "name": spec.name,
            "server_type": spec.server_type,
            "image": spec.image,
            "location": spec.location,
            "ssh_keys": list(spec.ssh_keys),
            "labels": dict(spec.labels),
            "start_after_create": True,
        }
        if firewall_id is not None:
            data["firewalls"] = [{"firewall": firewall_id}]
        body = await self._request("POST", "/servers", data)
        return None if body is None else body["server"]

    async def delete_server(self, server_id):
        await self._request("DELETE", f"/servers/{server_id}")

    async def server_action(self, server_id, action):
        """POST /servers/{id}/actions/{action} (``poweron``, ``poweroff``, ``reboot``...)."""
        body = await self._request("POST", f"/servers/{server_id}/actions/{action}")
        return None if body is None else body.get("action")

    # ── Firewalls ─────────────────────────────────────────────────

    async def find_firewall(self, name):
        body = await self._get("/firewalls", params={"name": name})
        firewalls = (body or {}).get("firewalls", [])
        return firewalls[0] if firewalls else None

    async def create_firewall(self, name, rules, labels=None):
        data = {"name": name, "rules": rules, "labels": labels or {}}
        body = await self._request("POST", "/firewalls", data)
        return None if body is None else body["firewall"]

    async def delete_firewall(self, firewall_id):
        await self._request("DELETE", f"/firewalls/{firewall_id}")

    # ── SSH keys ──────────────────────────────────────────────────

    async def find_ssh_key(self, name):
        body = await self._get("/ssh_keys", params={"name": name})
        keys = (body or {}).get("ssh_keys", [])
        return keys[0] if keys else None

    async def create_ssh_key(self, name, public_key, labels=None):
        data = {"name": name, "public_key": public_key, "labels": labels or {}}
        body = await self._request("POST", "/ssh_keys", data)
        return None if body is None else body["ssh_key"]


# ── Idempotent helpers ────────────────────────────────────────────


def _normalize_rules(rules):
    """Order-independent, comparable view of firewall rules."""
    normalized = []
    for rule in rules or []:
        normalized.append(
            (
                rule.get("direction", "in"),
                rule.get("protocol", ""),
                str(rule.get("port") or ""),
                tuple(sorted(rule.get("source_ips") or [])),
                tuple(sorted(rule.get("destination_ips") or [])),
            )
        )
    return sorted(normalized)


def rules_match(current, desired) -> bool:
    return _normalize_rules(current) == _normalize_rules(desired)


def _key_body(public_key):
    """Key type and base64 body, ignoring the trailing comment."""
    return " ".join(public_key.split()[:2])


async def ensure_ssh_key(client: HetznerClient, name, public_key):
    """Register *public_key* under *name* unless it is already there.

    Returns:
        The key name to pass to server creation.

    Raises:
        HetznerError: if *name* is registered with a different key.
    """
    existing = await client.find_ssh_key(name)
    if existing is not None:
        if _key_body(existing.get("public_key", "")) == _key_body(public_key):
            logger.info(f"SSH key '{name}' already registered (id={existing['id']}).")
            return name
        raise HetznerError(
            409, "uniqueness_error", f"SSH key '{name}' exists with a different public key. Use a different name."
        )

    logger.info(f"Registering SSH key '{name}' with Hetzner Cloud...")
    created = await client.create_ssh_key(name, public_key)
    if created is not None:
        logger.info(f"SSH key registered (id={created['id']}).")
    return name


async def ensure_firewall(client: HetznerClient, name, rules, labels=None):
    """Create firewall *name* unless it exists.

    An existing firewall is reused as-is; differing rules are reported, not
    silently replaced.

    Returns:
        The firewall id (None in dry-run when the firewall would be created).
    """
    existing = await client.find_firewall(name)
    if existing is not None:
        if rules_match(existing.get("rules"), rules):
            logger.info(f"Firewall '{name}' already exists with correct rules.")
        else:
            logger.warning(f"Firewall '{name}' exists but its rules differ from the NetBird defaults; keeping it unchanged.")
            logger.warning(f"  Review with: hcloud firewall describe {name}")
        return existing["id"]

    logger.info(f"Creating firewall '{name}' with {len(rules)} rule(s)...")
    created = await client.create_firewall(name, rules, labels=labels)
    return None if created is None else created["id"]


async def ensure_server(client: HetznerClient, spec: ServerSpec, firewall_id=None) -> ServerInfo:
    """Reuse server *spec.name* if it exists, otherwise create it.

    Returns:
        ServerInfo; ``created`` tells whether a new server was made. In
        dry-run mode a placeholder server is returned.
    """
    existing = await client.find_server(spec.name)
    if existing is not None:
        info = ServerInfo.from_api(existing)
        logger.warning(f"Server '{spec.name}' already exists (IP: {info.ipv4}, status: {info.status}); reusing it.")
        return info

    logger.info(f"Creating server '{spec.name}' (type={spec.server_type}, image={spec.image}, location={spec.location})...")
    created = await client.create_server(spec, firewall_id=firewall_id)
    if created is None:
        return ServerInfo(id=0, name=spec.name, status="initializing", ipv4=DRY_RUN_IPV4, created=True)
    info = ServerInfo.from_api(created, created=True)
    logger.info(f"Server '{spec.name}' created (id={info.id}, IP: {info.ipv4}).")
    return info


async def delete_server_by_name(client: HetznerClient, name):
    """Delete server *name*. Returns False if it does not exist."""
    server = await client.find_server(name)
    if server is None:
        if client.dry_run:
            await client.delete_server("<id>")
            return True
        logger.warning(f"Server '{name}' not found.")
        return False
    logger.info(f"Deleting server '{name}' (id={server['id']})...")
    await client.delete_server(server["id"])
    return True


async def delete_firewall_by_name(client: HetznerClient, name):
    firewall = await client.find_firewall(name)
    if firewall is None:
        if client.dry_run:
            await client.delete_firewall("<id>")
            return True
        logger.warning(f"Firewall '{name}' not found.")
        return False
    logger.info(f"Deleting firewall '{name}' (id={firewall['id']})...")
    await client.delete_firewall(firewall["id"])
    return True
