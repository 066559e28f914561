"""Tests for NetBird setup.env rendering and validation."""

import pytest

from nbdeploy.netbird import NetbirdConfig, parse_setup_env, render_setup_env, validate, validate_setup_env

TENANT_ID = "11111111-2222-3333-4444-555555555555"
CLIENT_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


def _config(**kwargs):
    values = {
        "domain": "netbird.example.com",
        "tenant_id": TENANT_ID,
        "client_id": CLIENT_ID,
        "letsencrypt_email": "admin@example.com",
    }
    values.update(kwargs)
    return NetbirdConfig(**values)


# ── NetbirdConfig ───────────────────────────────────────────────────


def test_from_env_prefers_entra_names():
    environ = {
        "NETBIRD_DOMAIN": " netbird.example.com ",
        "ENTRA_TENANT_ID": TENANT_ID,
        "AZURE_TENANT_ID": "ignored",
        "AZURE_CLIENT_ID": CLIENT_ID,
        "AZURE_CLIENT_SECRET": "s3cret-value",
    }
    config = NetbirdConfig.from_env(environ)

    assert config.domain == "netbird.example.com"
    assert config.tenant_id == TENANT_ID
    assert config.client_id == CLIENT_ID
    assert config.mgmt_client_secret == "s3cret-value"
    assert config.letsencrypt_email == ""


def test_from_env_overrides_win_when_set():
    environ = {"NETBIRD_DOMAIN": "env.example.com"}
    assert NetbirdConfig.from_env(environ, domain="flag.example.com").domain == "flag.example.com"
    assert NetbirdConfig.from_env(environ, domain=None).domain == "env.example.com"


def test_authority_and_management_credentials():
    config = _config()
    assert config.authority == f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
    assert not config.has_management_credentials
    assert _config(mgmt_client_id=CLIENT_ID, mgmt_client_secret="x", mgmt_object_id=TENANT_ID).has_management_credentials


# ── validate ────────────────────────────────────────────────────────


def test_valid_config():
    assert validate(_config()) == []


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"domain": ""}, "NETBIRD_DOMAIN is not set"),
        ({"domain": "not a domain"}, "Invalid domain format"),
        ({"domain": "localhost"}, "Invalid domain format"),
        ({"tenant_id": ""}, "ENTRA_TENANT_ID"),
        ({"tenant_id": "contoso"}, "Tenant ID is not a UUID"),
        ({"client_id": "1234"}, "Client ID is not a UUID"),
        ({"letsencrypt_email": "admin"}, "Invalid email format"),
        ({"mgmt_object_id": "abc"}, "Management object ID is not a UUID"),
    ],
)
def test_invalid_config(kwargs, message):
    errors = validate(_config(**kwargs))
    assert any(message in e for e in errors), errors


# ── render / parse ──────────────────────────────────────────────────


def test_render_contains_azure_settings():
    values = parse_setup_env(render_setup_env(_config()))

    assert values["NETBIRD_DOMAIN"] == "netbird.example.com"
    assert values["NETBIRD_MGMT_IDP"] == "azure"
    assert values["NETBIRD_AUTH_AUDIENCE"] == CLIENT_ID
    assert values["NETBIRD_AUTH_AUTHORITY"] == f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
    assert values["NETBIRD_AUTH_OIDC_CONFIGURATION_ENDPOINT"].endswith("/v2.0/.well-known/openid-configuration")
    assert values["NETBIRD_AUTH_SUPPORTED_SCOPES"] == f"openid profile email offline_access api://{CLIENT_ID}/api"
    assert values["NETBIRD_AUTH_USER_ID_CLAIM"] == "oid"
    assert values["NETBIRD_MGMT_API_ENDPOINT"] == "https://netbird.example.com:443"
    assert values["NETBIRD_IDP_MGMT_EXTRA_GRAPH_API_ENDPOINT"] == "https://graph.microsoft.com/v1.0"


def test_render_quotes_shell_sensitive_secret():
    secret = "ab$c`d'e\"f"
    text = render_setup_env(_config(mgmt_client_secret=secret))

    assert parse_setup_env(text)["NETBIRD_IDP_MGMT_CLIENT_SECRET"] == secret
    assert "NETBIRD_IDP_MGMT_CLIENT_SECRET='ab$c" in text


def test_render_rejects_invalid_config():
    with pytest.raises(ValueError, match="Tenant ID"):
        render_setup_env(_config(tenant_id="nope"))


def test_parse_handles_comments_and_export():
    text = '# comment\n\nexport NETBIRD_DOMAIN="a.example.com"\nEMPTY=\nnot a pair\n'
    assert parse_setup_env(text) == {"NETBIRD_DOMAIN": "a.example.com", "EMPTY": ""}


# ── validate_setup_env ──────────────────────────────────────────────


def test_rendered_file_validates():
    assert validate_setup_env(render_setup_env(_config())) == []


def test_validate_setup_env_reports_problems():
    text = (
        'NETBIRD_DOMAIN="netbird.example.com"\n'
        f'NETBIRD_AUTH_CLIENT_ID="{CLIENT_ID}"\n'
        'NETBIRD_AUTH_AUDIENCE="something-else"\n'
        'NETBIRD_MGMT_IDP="keycloak"\n'
    )
    errors = validate_setup_env(text)

    assert "NETBIRD_AUTH_AUTHORITY is missing or empty" in errors
    assert "NETBIRD_AUTH_AUDIENCE does not match NETBIRD_AUTH_CLIENT_ID" in errors
    assert any("expected 'azure'" in e for e in errors)
