import httpx
import pytest

from bexio_sync.http import handle_rate_limits


@pytest.mark.asyncio
async def test_rate_limit_429_records_wait() -> None:
    request = httpx.Request("GET", "https://api.bexio.com/2.0/contact")
    response = httpx.Response(
        429,
        request=request,
        headers={"ratelimit-remaining": "0", "retry-after": "45"},
        json={"message": "Too Many Requests"},
    )

    await handle_rate_limits(response)

    assert response.extensions["bexio_wait_seconds"] == 45


@pytest.mark.asyncio
async def test_rate_limit_reset_header_fallback() -> None:
    request = httpx.Request("GET", "https://api.bexio.com/2.0/contact")
    response = httpx.Response(429, request=request, headers={"ratelimit-reset": "12"})

    await handle_rate_limits(response)

    assert response.extensions["bexio_wait_seconds"] == 12


@pytest.mark.asyncio
async def test_rate_limit_remaining_zero(caplog) -> None:
    request = httpx.Request("GET", "https://api.bexio.com/2.0/contact")
    response = httpx.Response(
        200,
        request=request,
        headers={"ratelimit-remaining": "0", "ratelimit-reset": "30"},
        json={"ok": True},
    )

    await handle_rate_limits(response)

    assert "bexio_wait_seconds" not in response.extensions
    assert "Rate limit warning" in caplog.text


@pytest.mark.asyncio
async def test_rate_limit_normal_passthrough() -> None:
    request = httpx.Request("GET", "https://api.bexio.com/2.0/contact")
    response = httpx.Response(200, request=request, headers={"ratelimit-remaining": "10"}, json={"ok": True})

    await handle_rate_limits(response)

    assert response.json() == {"ok": True}
    assert "bexio_wait_seconds" not in response.extensions


@pytest.mark.asyncio
async def test_rate_limit_missing_headers() -> None:
    request = httpx.Request("GET", "https://api.bexio.com/2.0/contact")
    response = httpx.Response(429, request=request)

    await handle_rate_limits(response)

    assert response.extensions["bexio_wait_seconds"] is None
