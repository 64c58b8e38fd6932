"""Branding images (university logo, national flag, ministry emblem).

A source is a local file path or an http(s) URL, as configured in settings.
An empty source means "no image". A configured source that cannot be read
aborts the composition: a diploma is never issued with half its branding.
"""
import asyncio
from pathlib import Path

import httpx
import structlog

from unidiploma.config import settings
from unidiploma.documents.exceptions import AssetError, GatewayTimeoutError

logger = structlog.get_logger()

MAX_ASSET_SIZE = 2 * 1024 * 1024

_asset_client: httpx.AsyncClient | None = None


def _get_asset_client() -> httpx.AsyncClient:
    global _asset_client
    if _asset_client is None or _asset_client.is_closed:
        _asset_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.ASSET_FETCH_TIMEOUT_SECONDS),
            follow_redirects=True,
        )
    return _asset_client


async def _fetch_remote(url: str, timeout: float | None) -> bytes:
    try:
        if timeout is None:
            response = await _get_asset_client().get(url)
        else:
            response = await _get_asset_client().get(url, timeout=timeout)
    except httpx.TimeoutException as exc:
        raise GatewayTimeoutError(f"Timed out fetching asset {url}") from exc
    except httpx.HTTPError as exc:
        raise AssetError(f"Could not fetch asset {url}: {exc}") from exc
    if not response.is_success:
        raise AssetError(f"Could not fetch asset {url}: HTTP {response.status_code}")
    return response.content


def _read_local(path: str) -> bytes:
    file = Path(path)
    if not file.is_file():
        raise AssetError(f"Asset file not found: {path}")
    return file.read_bytes()


async def load_asset(source: str | None, timeout: float | None = None) -> bytes | None:
    """Read one asset; ``timeout`` overrides the client default for remote sources."""
    if not source:
        return None
    if source.startswith(("http://", "https://")):
        content = await _fetch_remote(source, timeout)
    else:
        content = await asyncio.to_thread(_read_local, source)
    if not content:
        raise AssetError(f"Asset is empty: {source}")
    if len(content) > MAX_ASSET_SIZE:
        raise AssetError(f"Asset too large: {source}")
    return content


async def load_assets(*sources: str | None, timeout: float) -> list[bytes | None]:
    """Load several assets concurrently; the first failure aborts the batch.

    ``timeout`` bounds each request and the whole batch.
    """
    try:
        return list(
            await asyncio.wait_for(
                asyncio.gather(*(load_asset(source, timeout) for source in sources)),
                timeout=timeout,
            )
        )
    except asyncio.TimeoutError as exc:
        logger.warning("asset_fetch_timeout", sources=[s for s in sources if s])
        raise GatewayTimeoutError("Timed out loading branding assets") from exc
