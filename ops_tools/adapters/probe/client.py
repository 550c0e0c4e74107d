"""HTTP Health Probe Client.

Single GET probes with a per-call timeout. Network failures are returned
as ProbeResult values, never raised.
"""

import time

import httpx
from pydantic import BaseModel

DNS_ERROR_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated",
)


class ProbeResult(BaseModel):
    """Outcome of one probe."""

    url: str
    status_code: int | None = None
    latency_ms: int = 0
    error_kind: str | None = None  # timeout, unreachable, dns_error, error
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class ProbeClient:
    """HTTP client for endpoint health probes."""

    def __init__(self, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize probe client.

        Args:
            timeout: Default timeout in seconds
            transport: Optional transport (tests use httpx.MockTransport)
        """
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def probe(
        self,
        url: str,
        timeout_ms: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> ProbeResult:
        """GET ``url`` and report status and latency.

        Args:
            url: Target URL
            timeout_ms: Per-call timeout (defaults to the client timeout)
            headers: Extra request headers

        Returns:
            ProbeResult (error_kind set when no HTTP response arrived)
        """
        timeout = timeout_ms / 1000 if timeout_ms else self.timeout
        started = time.monotonic()

        try:
            response = await self.client.get(
                url,
                headers={"Accept": "application/json", **(headers or {})},
                timeout=timeout,
            )
            return ProbeResult(
                url=url,
                status_code=response.status_code,
                latency_ms=int((time.monotonic() - started) * 1000),
            )
        except httpx.TimeoutException:
            kind, message = "timeout", f"Request timed out after {int(timeout * 1000)}ms"
        except httpx.ConnectError as e:
            text = str(e).lower()
            if any(marker in text for marker in DNS_ERROR_MARKERS):
                kind, message = "dns_error", "DNS lookup failed"
            else:
                kind, message = "unreachable", "Connection refused"
        except httpx.HTTPError as e:
            kind, message = "error", str(e) or e.__class__.__name__

        return ProbeResult(
            url=url,
            latency_ms=int((time.monotonic() - started) * 1000),
            error_kind=kind,
            error=message,
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
