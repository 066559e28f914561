"""Tests for the Hetzner server-running probe."""

import asyncio

import httpx

from nbdeploy.probes import ServerRunningProbe
from nbdeploy.provisioning import HetznerClient
from nbdeploy.readiness import DeploymentTarget


def _server(status, ip="203.0.113.20", server_id=42):
    public_net = {"ipv4": {"ip": ip}} if ip else {"ipv4": None}
    return {"id": server_id, "name": "netbird-selfhosted-acme", "status": status, "public_net": public_net}


def _client(handler):
    return HetznerClient("test-token", api_url="https://api.test/v1", transport=httpx.MockTransport(handler))


def test_running_reports_address_and_id():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"servers": [_server("running")]})

    target = DeploymentTarget(server_name="netbird-selfhosted-acme")
    result = asyncio.run(ServerRunningProbe(_client(handler))(target))

    assert result.ready
    assert result.facts == {"address": "203.0.113.20", "server_id": 42}
    assert requests[0].url.params["name"] == "netbird-selfhosted-acme"
    assert requests[0].headers["Authorization"] == "Bearer test-token"


def test_uses_server_id_when_known():
    def handler(request):
        assert request.url.path == "/v1/servers/42"
        return httpx.Response(200, json={"server": _server("running")})

    target = DeploymentTarget(server_name="nb", server_id=42)
    assert asyncio.run(ServerRunningProbe(_client(handler))(target)).ready


def test_initializing_is_retryable():
    client = _client(lambda request: httpx.Response(200, json={"server": _server("initializing")}))
    result = asyncio.run(ServerRunningProbe(client)(DeploymentTarget(server_name="nb", server_id=42)))

    assert not result.ready
    assert result.retryable
    assert "initializing" in result.detail


def test_running_without_ip_waits():
    client = _client(lambda request: httpx.Response(200, json={"server": _server("running", ip=None)}))
    result = asyncio.run(ServerRunningProbe(client)(DeploymentTarget(server_name="nb", server_id=42)))

    assert not result.ready
    assert result.retryable


def test_not_listed_yet_is_retryable():
    client = _client(lambda request: httpx.Response(200, json={"servers": []}))
    result = asyncio.run(ServerRunningProbe(client)(DeploymentTarget(server_name="nb")))

    assert not result.ready
    assert result.retryable


def test_api_errors_are_retryable():
    def rate_limited(request):
        return httpx.Response(429, json={"error": {"code": "rate_limit_exceeded", "message": "slow down"}})

    def not_found(request):
        return httpx.Response(404, json={"error": {"code": "not_found", "message": "server not found"}})

    target = DeploymentTarget(server_name="nb", server_id=42)
    for handler in (rate_limited, not_found):
        result = asyncio.run(ServerRunningProbe(_client(handler))(target))
        assert not result.ready
        assert result.retryable


def test_transport_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = asyncio.run(ServerRunningProbe(_client(handler))(DeploymentTarget(server_name="nb", server_id=42)))
    assert not result.ready
    assert result.retryable
    assert "unreachable" in result.detail


def test_describe():
    probe = ServerRunningProbe(_client(lambda r: httpx.Response(200)))
    assert probe.describe(DeploymentTarget(server_name="nb")) == "hcloud server describe nb"


def test_malformed_response_is_retryable():
    def not_json(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    def missing_server(request):
        return httpx.Response(200, json={"unexpected": True})

    target = DeploymentTarget(server_name="nb", server_id=42)
    for handler in (not_json, missing_server):
        result = asyncio.run(ServerRunningProbe(_client(handler))(target))
        assert not result.ready
        assert result.retryable
        assert "unexpected API response" in result.detail
