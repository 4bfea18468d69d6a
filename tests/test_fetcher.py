import httpx
import pytest

from dynwhitelist.errors import InvalidConfiguration, TransportError
from dynwhitelist.fetcher import fetch, validate_target


@pytest.mark.asyncio
async def test_fetch_returns_body():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        return httpx.Response(200, content=b"192.0.2.123")

    body = await fetch("http://resolver.test/", transport=httpx.MockTransport(handler))
    assert body == b"192.0.2.123"


@pytest.mark.asyncio
async def test_fetch_non_success_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, content=b"down"))

    with pytest.raises(TransportError) as excinfo:
        await fetch("http://lists.test/office", transport=transport)
    assert excinfo.value.status_code == 503
    assert excinfo.value.target == "http://lists.test/office"


@pytest.mark.asyncio
async def test_fetch_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError, match="connection refused") as excinfo:
        await fetch("http://resolver.test/", transport=httpx.MockTransport(handler))
    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_fetch_too_large(monkeypatch):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"x"))
    monkeypatch.setattr("dynwhitelist.fetcher.MAX_RESPONSE_BYTES", 0)

    with pytest.raises(TransportError, match="too large"):
        await fetch("http://resolver.test/", transport=transport)


def test_validate_target_valid():
    url = "https://api.ipify.org?format=text"
    assert validate_target(url) == url


def test_validate_target_wrong_scheme():
    with pytest.raises(InvalidConfiguration, match="Expected HTTP"):
        validate_target("ftp://lists.test/office")


def test_validate_target_missing_host():
    with pytest.raises(InvalidConfiguration, match="Missing host"):
        validate_target("http:///office")


def test_validate_target_malformed_host():
    with pytest.raises(InvalidConfiguration, match="Malformed URL"):
        validate_target("http://[bad/x")
