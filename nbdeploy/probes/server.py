"""Server-running probe: poll the Hetzner server status field."""

import httpx

from nbdeploy.provisioning.hetzner import HetznerClient, HetznerError
from nbdeploy.provisioning.types import ServerInfo
from nbdeploy.readiness.types import DeploymentTarget, ProbeResult

RUNNING = "running"


class ServerRunningProbe:
    """Ready iff the server's status is ``running``.

    Every failure is retryable: the API is eventually consistent right after
    creation and rate limits or network errors are transient.
    """

    name = "server-boot"

    def __init__(self, client: HetznerClient):
        self.client = client

    async def __call__(self, target: DeploymentTarget) -> ProbeResult:
        try:
            if target.server_id is not None:
                server = await self.client.get_server(target.server_id)
            else:
                server = await self.client.find_server(target.server_name)
        except HetznerError as e:
            return ProbeResult.waiting(f"API error {e.status} ({e.code}): {e.message}")
        except httpx.TransportError as e:
            return ProbeResult.waiting(f"API unreachable: {e}")
        except (httpx.HTTPError, ValueError, KeyError) as e:
            return ProbeResult.waiting(f"unexpected API response: {e!r}")

        if server is None:
            return ProbeResult.waiting(f"server '{target.server_name}' not listed yet")

        info = ServerInfo.from_api(server)
        if info.status != RUNNING:
            return ProbeResult.waiting(f"status '{info.status}'")
        if not info.ipv4:
            return ProbeResult.waiting("running, public IPv4 not assigned yet")
        return ProbeResult.ok(f"running at {info.ipv4}", address=info.ipv4, server_id=info.id)

    def describe(self, target: DeploymentTarget) -> str:
        return f"hcloud server describe {target.server_name}"
