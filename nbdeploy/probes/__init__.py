"""Condition probes for each deployment stage."""

from nbdeploy.probes.dns import DnsResolvesProbe
from nbdeploy.probes.dry_run import DryRunProbe, dry_run_server_probe
from nbdeploy.probes.server import ServerRunningProbe
from nbdeploy.probes.ssh import ServicesRunningProbe, SshReadyProbe, check_tcp_port, classify_ssh_failure
from nbdeploy.probes.tls import TlsCertProbe, certificate_window

__all__ = [
    "DnsResolvesProbe",
    "DryRunProbe",
    "ServerRunningProbe",
    "ServicesRunningProbe",
    "SshReadyProbe",
    "TlsCertProbe",
    "certificate_window",
    "check_tcp_port",
    "classify_ssh_failure",
    "dry_run_server_probe",
]
