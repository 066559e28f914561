"""DNS probe: the domain resolves to the server's public address."""

import asyncio
import socket

from nbdeploy.readiness.types import DeploymentTarget, ProbeResult


async def resolve_ipv4(domain):
    """Return the set of IPv4 addresses *domain* resolves to."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(domain, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
    return {info[4][0] for info in infos}


class DnsResolvesProbe:
    """Ready iff the configured domain has an A record pointing at the server."""

    name = "dns-propagated"

    def __init__(self, resolver=resolve_ipv4):
        self.resolver = resolver

    async def __call__(self, target: DeploymentTarget) -> ProbeResult:
        if not target.domain:
            return ProbeResult.failed("no domain configured for the DNS check")
        if not target.address:
            return ProbeResult.waiting("server address not known yet")

        try:
            addresses = await self.resolver(target.domain)
        except socket.gaierror as e:
            return ProbeResult.waiting(f"{target.domain} does not resolve yet: {e.strerror or e}")
        except OSError as e:
            return ProbeResult.waiting(f"lookup of {target.domain} failed: {e}")

        if target.address in addresses:
            return ProbeResult.ok(f"{target.domain} resolves to {target.address}")
        found = ", ".join(sorted(addresses)) or "nothing"
        return ProbeResult.waiting(f"{target.domain} resolves to {found}, expected {target.address}")

    def describe(self, target: DeploymentTarget) -> str:
        return f"dig +short A {target.domain or '<domain>'}"
