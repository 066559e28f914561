"""TLS probe: a browser-trusted certificate is served for the domain."""

import asyncio
import ssl
import time

import httpx

from nbdeploy.readiness.types import DeploymentTarget, ProbeResult

HTTPS_PORT = 443


def certificate_window(cert: dict, now: float | None = None):
    """Return (valid, detail) for a peer certificate's notBefore/notAfter."""
    now = time.time() if now is None else now
    not_before = ssl.cert_time_to_seconds(cert["notBefore"])
    not_after = ssl.cert_time_to_seconds(cert["notAfter"])
    if now < not_before:
        return False, f"certificate not valid until {cert['notBefore']}"
    if now >= not_after:
        return False, f"certificate expired on {cert['notAfter']}"
    days_left = int((not_after - now) // 86400)
    return True, f"certificate valid for {days_left} more day(s)"


class TlsCertProbe:
    """Ready iff the domain serves a verifiable certificate and answers HTTPS.

    Certificate verification failures are retryable: right after the first
    start the reverse proxy serves a self-signed certificate until the ACME
    issuance finishes.
    """

    name = "tls-cert"

    def __init__(self, port=HTTPS_PORT, handshake_timeout=10, check_https=True, transport=None, ssl_context=None):
        self.port = port
        self.handshake_timeout = handshake_timeout
        self.check_https = check_https
        self.transport = transport
        self.ssl_context = ssl_context

    async def fetch_certificate(self, domain):
        """TLS handshake against *domain*; returns the verified peer certificate."""
        context = self.ssl_context or ssl.create_default_context()
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(domain, self.port, ssl=context, server_hostname=domain),
            timeout=self.handshake_timeout,
        )
        try:
            return writer.get_extra_info("peercert")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass

    async def __call__(self, target: DeploymentTarget) -> ProbeResult:
        domain = target.domain
        if not domain:
            return ProbeResult.failed("no domain configured for the TLS check")

        try:
            cert = await self.fetch_certificate(domain)
        except ssl.SSLCertVerificationError as e:
            return ProbeResult.waiting(f"certificate not valid yet: {e.verify_message}")
        except ssl.SSLError as e:
            return ProbeResult.waiting(f"TLS handshake failed: {getattr(e, 'reason', None) or e}")
        except TimeoutError:
            return ProbeResult.waiting(f"connection to {domain}:{self.port} timed out (proxy not up yet)")
        except ConnectionRefusedError:
            return ProbeResult.waiting(f"connection to {domain}:{self.port} refused (proxy not up yet)")
        except OSError as e:
            return ProbeResult.waiting(f"cannot connect to {domain}:{self.port}: {e}")

        if not cert:
            return ProbeResult.waiting("no peer certificate presented")
        valid, cert_detail = certificate_window(cert)
        if not valid:
            return ProbeResult.waiting(cert_detail)
        if not self.check_https:
            return ProbeResult.ok(cert_detail)

        url = f"https://{domain}/" if self.port == HTTPS_PORT else f"https://{domain}:{self.port}/"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.handshake_timeout) as client:
                resp = await client.get(url)
        except httpx.TransportError as e:
            return ProbeResult.waiting(f"HTTPS request failed: {e}")
        if resp.status_code >= 500:
            return ProbeResult.waiting(f"HTTPS returned {resp.status_code} (backend still starting)")
        return ProbeResult.ok(f"{cert_detail}; HTTPS returned {resp.status_code}")

    def describe(self, target: DeploymentTarget) -> str:
        domain = target.domain or "<domain>"
        return f"openssl s_client -connect {domain}:{self.port} -servername {domain} </dev/null"
