"""Shared data types for Hetzner provisioning."""

from dataclasses import dataclass, field


@dataclass
class ServerSpec:
    """Parameters for creating a Hetzner Cloud server."""

    name: str
    server_type: str = "cax11"
    image: str = "ubuntu-24.04"
    location: str = "nbg1"
    ssh_keys: list[str] = field(default_factory=list)
    firewall: str | None = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ServerInfo:
    """Structured view of a Hetzner server as returned by the API."""

    id: int
    name: str
    status: str
    ipv4: str | None = None
    created: bool = False

    @classmethod
    def from_api(cls, server: dict, created: bool = False) -> "ServerInfo":
        ipv4 = ((server.get("public_net") or {}).get("ipv4") or {}).get("ip")
        return cls(
            id=server["id"],
            name=server.get("name", ""),
            status=server.get("status", "unknown"),
            ipv4=ipv4,
            created=created,
        )
