"""Shared HTTP client construction."""

import httpx

from xero_client.config import Settings

USER_AGENT = "xero-client/0.1"


def build_async_client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Return an httpx.AsyncClient with the client's timeout and default headers.

    Retries are not configured here: the request executor owns retry policy so it
    can tell rate limits, server errors and transport failures apart.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        transport=transport,
    )
