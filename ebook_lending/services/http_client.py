import logging
from typing import Optional

import httpx

from ebook_lending.config import settings

logger = logging.getLogger(__name__)


def build_timeout(total: float) -> httpx.Timeout:
    """Overall bound for a request, with connecting capped at five seconds."""
    return httpx.Timeout(timeout=total, connect=min(5.0, total))


class GatewayHTTPClient:
    """Synchronous pooled HTTP client for outbound calls to external services.

    Every request is bounded by an explicit timeout and is sent exactly once;
    callers decide what a failure means.
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        limits = httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0,
        )
        total = timeout if timeout is not None else settings.payment_gateway_timeout
        self.timeout = build_timeout(total)
        self._client = httpx.Client(
            limits=limits,
            timeout=self.timeout,
            follow_redirects=False,
            transport=transport,
        )

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self._client.post(url, **kwargs)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# Global HTTP client instance
_global_client: Optional[GatewayHTTPClient] = None


def get_http_client() -> GatewayHTTPClient:
    """Get or create the shared HTTP client."""
    global _global_client
    if _global_client is None:
        _global_client = GatewayHTTPClient()
    return _global_client


def close_http_client() -> None:
    global _global_client
    if _global_client:
        _global_client.close()
        _global_client = None
