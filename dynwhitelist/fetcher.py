import logging
from urllib.parse import urlparse

import httpx

from dynwhitelist.errors import InvalidConfiguration, TransportError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")
TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=5.0)
MAX_RESPONSE_BYTES = 5 * 1024 * 1024  # 5 MB safety ceiling


def parse_target(url: str):
    try:
        return urlparse(url)
    except ValueError as exc:
        raise InvalidConfiguration(f"Malformed URL {url!r}: {exc}") from exc


def validate_target(url: str) -> str:
    parsed = parse_target(url)
    if parsed.scheme not in ALLOWED_SCHEMES:
        raise InvalidConfiguration(f"Expected HTTP(S) URL, got scheme: {parsed.scheme!r}")
    if not parsed.hostname:
        raise InvalidConfiguration(f"Missing host in URL: {url!r}")
    return url


async def fetch(target: str, *, transport: httpx.AsyncBaseTransport | None = None) -> bytes:
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=TIMEOUT,
            max_redirects=3,
            transport=transport,
        ) as client:
            response = await client.get(target)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code
        logger.warning("Fetch %s returned HTTP %d", target, status)
        raise TransportError(target, f"HTTP {status}", status_code=status) from exc
    except httpx.HTTPError as exc:
        logger.warning("Fetch %s failed: %s", target, exc)
        raise TransportError(target, str(exc) or type(exc).__name__) from exc

    if len(response.content) > MAX_RESPONSE_BYTES:
        raise TransportError(target, "response too large", status_code=response.status_code)
    logger.debug("Fetched %s: %d bytes", target, len(response.content))
    return response.content
