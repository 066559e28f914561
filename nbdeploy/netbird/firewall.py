"""Hetzner firewall rules and resource naming for NetBird servers."""

import re

ANYWHERE = ["0.0.0.0/0", "::/0"]

# (protocol, port, description)
NETBIRD_PORTS = [
    ("tcp", "22", "SSH"),
    ("tcp", "80", "HTTP (ACME challenge)"),
    ("tcp", "443", "HTTPS"),
    ("tcp", "33073", "Management gRPC"),
    ("tcp", "10000", "Signal"),
    ("tcp", "33080", "Relay"),
    ("udp", "3478", "STUN/TURN"),
    ("udp", "49152-65535", "TURN relay range"),
]

NETBIRD_FIREWALL_RULES = [
    {"direction": "in", "protocol": proto, "port": port, "source_ips": list(ANYWHERE), "description": desc}
    for proto, port, desc in NETBIRD_PORTS
]

MANAGED_BY = "netbird-selfhosted"


def slugify(name):
    """Lowercase, non-alphanumerics to '-', dashes collapsed and trimmed."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower())
    return slug.strip("-")


def server_name(customer_slug=""):
    return f"netbird-selfhosted-{customer_slug}" if customer_slug else "netbird-selfhosted"


def firewall_name(customer_slug=""):
    return f"{customer_slug}-netbird-firewall" if customer_slug else "netbird-firewall"


def server_labels(customer_slug="", created=None):
    """Labels attached to every server and firewall this tool creates."""
    labels = {"managed-by": MANAGED_BY, "purpose": "netbird-server"}
    if customer_slug:
        labels["customer"] = customer_slug
    if created:
        labels["created"] = created
    return labels
