"""NetBird setup.env generation for Microsoft Entra ID (Azure AD)."""

import re
import shlex
from dataclasses import dataclass
from string import Template

UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
DOMAIN_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?)*\.[a-zA-Z]{2,}$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"

# Environment variable names; the first one found wins.
ENV_NAMES = {
    "domain": ("NETBIRD_DOMAIN",),
    "tenant_id": ("ENTRA_TENANT_ID", "AZURE_TENANT_ID"),
    "client_id": ("ENTRA_SPA_CLIENT_ID", "AZURE_CLIENT_ID"),
    "letsencrypt_email": ("LETSENCRYPT_EMAIL", "NETBIRD_LETSENCRYPT_EMAIL"),
    "mgmt_client_id": ("ENTRA_MGMT_CLIENT_ID", "AZURE_MGMT_CLIENT_ID"),
    "mgmt_client_secret": ("ENTRA_MGMT_CLIENT_SECRET", "AZURE_MGMT_CLIENT_SECRET", "AZURE_CLIENT_SECRET"),
    "mgmt_object_id": ("ENTRA_MGMT_OBJECT_ID", "AZURE_MGMT_OBJECT_ID"),
}

SETUP_ENV_TEMPLATE = Template(
    """\
NETBIRD_DOMAIN=$domain
NETBIRD_LETSENCRYPT_EMAIL=$letsencrypt_email
NETBIRD_MGMT_IDP="azure"
NETBIRD_AUTH_CLIENT_ID=$client_id
NETBIRD_AUTH_AUTHORITY=$authority
NETBIRD_AUTH_OIDC_CONFIGURATION_ENDPOINT=$oidc_endpoint
NETBIRD_AUTH_AUDIENCE=$client_id
NETBIRD_AUTH_REDIRECT_URI=""
NETBIRD_AUTH_SILENT_REDIRECT_URI=""
NETBIRD_AUTH_SUPPORTED_SCOPES=$scopes
NETBIRD_AUTH_USER_ID_CLAIM="oid"
NETBIRD_TOKEN_SOURCE="idToken"
NETBIRD_AUTH_DEVICE_AUTH_PROVIDER="none"
NETBIRD_USE_AUTH0=false
NETBIRD_MGMT_API_ENDPOINT=$api_endpoint
NETBIRD_MGMT_SINGLE_ACCOUNT_MODE=true
NETBIRD_IDP_MGMT_CLIENT_ID=$mgmt_client_id
NETBIRD_IDP_MGMT_CLIENT_SECRET=$mgmt_client_secret
NETBIRD_IDP_MGMT_EXTRA_OBJECT_ID=$mgmt_object_id
NETBIRD_IDP_MGMT_EXTRA_GRAPH_API_ENDPOINT=$graph_endpoint
"""
)

REQUIRED_KEYS = (
    "NETBIRD_DOMAIN",
    "NETBIRD_AUTH_CLIENT_ID",
    "NETBIRD_AUTH_AUTHORITY",
    "NETBIRD_AUTH_AUDIENCE",
    "NETBIRD_MGMT_IDP",
)


@dataclass
class NetbirdConfig:
    """Identity-provider settings for one NetBird deployment."""

    domain: str
    tenant_id: str
    client_id: str
    letsencrypt_email: str = ""
    mgmt_client_id: str = ""
    mgmt_client_secret: str = ""
    mgmt_object_id: str = ""

    @classmethod
    def from_env(cls, environ, **overrides) -> "NetbirdConfig":
        """Build a config from environment variables.

        Both ``ENTRA_*`` and legacy ``AZURE_*`` names are accepted. Non-empty
        keyword overrides (typically CLI flags) take precedence.
        """
        values = {}
        for field_name, names in ENV_NAMES.items():
            value = overrides.get(field_name) or ""
            if not value:
                value = next((environ[n] for n in names if environ.get(n)), "")
            values[field_name] = value.strip()
        return cls(**values)

    @property
    def authority(self):
        return f"https://login.microsoftonline.com/{self.tenant_id}/v2.0"

    @property
    def has_management_credentials(self):
        return bool(self.mgmt_client_id and self.mgmt_client_secret and self.mgmt_object_id)


def validate(config: NetbirdConfig) -> list[str]:
    """Return a list of problems with *config* (empty when valid)."""
    errors = []
    if not config.domain:
        errors.append("NETBIRD_DOMAIN is not set")
    elif not DOMAIN_RE.match(config.domain):
        errors.append(f"Invalid domain format: {config.domain}")
    if not config.tenant_id:
        errors.append("ENTRA_TENANT_ID (or AZURE_TENANT_ID) is not set")
    elif not UUID_RE.match(config.tenant_id):
        errors.append(f"Tenant ID is not a UUID: {config.tenant_id}")
    if not config.client_id:
        errors.append("ENTRA_SPA_CLIENT_ID (or AZURE_CLIENT_ID) is not set")
    elif not UUID_RE.match(config.client_id):
        errors.append(f"Client ID is not a UUID: {config.client_id}")
    if config.letsencrypt_email and not EMAIL_RE.match(config.letsencrypt_email):
        errors.append(f"Invalid email format: {config.letsencrypt_email}")
    for label, value in (("Management client ID", config.mgmt_client_id), ("Management object ID", config.mgmt_object_id)):
        if value and not UUID_RE.match(value):
            errors.append(f"{label} is not a UUID: {value}")
    return errors


def render_setup_env(config: NetbirdConfig) -> str:
    """Render setup.env content for the NetBird configure.sh script.

    Raises:
        ValueError: if the config does not validate.
    """
    errors = validate(config)
    if errors:
        raise ValueError("Invalid NetBird configuration: " + "; ".join(errors))

    values = {
        "domain": config.domain,
        "letsencrypt_email": config.letsencrypt_email,
        "client_id": config.client_id,
        "authority": config.authority,
        "oidc_endpoint": f"{config.authority}/.well-known/openid-configuration",
        "scopes": f"openid profile email offline_access api://{config.client_id}/api",
        "api_endpoint": f"https://{config.domain}:443",
        "mgmt_client_id": config.mgmt_client_id,
        "mgmt_client_secret": config.mgmt_client_secret,
        "mgmt_object_id": config.mgmt_object_id,
        "graph_endpoint": GRAPH_API_ENDPOINT,
    }
    # setup.env is sourced by bash; quote every value.
    return SETUP_ENV_TEMPLATE.substitute({k: _quote(v) for k, v in values.items()})


def _quote(value):
    return f'"{value}"' if re.fullmatch(r"[A-Za-z0-9._:/@+ -]*", value) else shlex.quote(value)


def parse_setup_env(text) -> dict:
    """Parse KEY=value lines, ignoring comments and blanks."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        raw = raw.strip()
        if raw:
            parts = shlex.split(raw)
            raw = parts[0] if parts else ""
        values[key] = raw
    return values


def validate_setup_env(text) -> list[str]:
    """Validate rendered or hand-written setup.env content."""
    values = parse_setup_env(text)
    errors = [f"{key} is missing or empty" for key in REQUIRED_KEYS if not values.get(key)]
    domain = values.get("NETBIRD_DOMAIN")
    if domain and not DOMAIN_RE.match(domain):
        errors.append(f"Invalid domain format: {domain}")
    client_id = values.get("NETBIRD_AUTH_CLIENT_ID")
    if client_id and not UUID_RE.match(client_id):
        errors.append(f"NETBIRD_AUTH_CLIENT_ID is not a UUID: {client_id}")
    audience = values.get("NETBIRD_AUTH_AUDIENCE")
    if client_id and audience and audience != client_id:
        errors.append("NETBIRD_AUTH_AUDIENCE does not match NETBIRD_AUTH_CLIENT_ID")
    if values.get("NETBIRD_MGMT_IDP") and values["NETBIRD_MGMT_IDP"] != "azure":
        errors.append(f"NETBIRD_MGMT_IDP is '{values['NETBIRD_MGMT_IDP']}', expected 'azure'")
    email = values.get("NETBIRD_LETSENCRYPT_EMAIL")
    if email and not EMAIL_RE.match(email):
        errors.append(f"Invalid email format: {email}")
    return errors
