"""Process-wide HTTP client.

One ``httpx.AsyncClient`` is shared by every metadata call and transport so the
cookie jar the platform sets on the watch page is carried to later requests.
It lives as long as the process unless :func:`close_client` is called.
"""
from typing import Any

import httpx

from vidstream.core.config import settings
from vidstream.core.logging import get_logger
from vidstream.models.video import RequestOptions

logger = get_logger(__name__)

_client: httpx.AsyncClient | None = None


def _build_client() -> httpx.AsyncClient:
    kwargs: dict[str, Any] = {
        "cookies": httpx.Cookies(),
        "follow_redirects": True,
        "max_redirects": settings.HTTP_MAX_REDIRECTS,
        "timeout": settings.HTTP_TIMEOUT_SECONDS,
    }
    if settings.HTTP_PROXY:
        kwargs["proxy"] = settings.HTTP_PROXY
    return httpx.AsyncClient(**kwargs)


def get_client() -> httpx.AsyncClient:
    """Return the shared client, creating it on first use."""
    global _client
    if _client is None or _client.is_closed:
        _client = _build_client()
    return _client


def set_client(client: httpx.AsyncClient | None) -> None:
    """Replace the shared client (tests, custom transports)."""
    global _client
    _client = client


async def close_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


def merge_headers(options: RequestOptions | None, *layers: dict[str, str]) -> dict[str, str]:
    """Combine header layers left to right, then the caller's overrides."""
    headers: dict[str, str] = {}
    for layer in layers:
        headers.update(layer)
    if options is not None:
        headers.update(options.headers)
    return headers


async def get_text(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    options: RequestOptions | None = None,
) -> str:
    """GET ``url`` and return the decoded body.

    Raises:
        httpx.HTTPError: On network failure or a non-2xx status
    """
    client = get_client()
    request_headers = merge_headers(options)
    if headers:
        # Explicit pipeline headers (e.g. the blank User-Agent) win over overrides
        request_headers.update(headers)
    timeout = options.timeout if options and options.timeout else httpx.USE_CLIENT_DEFAULT
    response = await client.get(url, params=params, headers=request_headers, timeout=timeout)
    response.raise_for_status()
    logger.debug(f"GET {response.url} -> {response.status_code} ({len(response.content)} bytes)")
    return response.text
