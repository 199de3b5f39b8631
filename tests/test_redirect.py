"""Redirect and QR endpoint behavior tests."""

from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import AsyncClient

URLS = "/api/v1/urls"


async def shorten(client: AsyncClient, headers: dict[str, str], **payload) -> str:
    response = await client.post(URLS, json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.asyncio
async def test_redirect_valid_id(client: AsyncClient, auth_headers) -> None:
    short_id = await shorten(client, auth_headers, original_url="https://www.google.com")

    # httpx won't follow by default
    response = await client.get(f"/{short_id}", follow_redirects=False)
    assert response.status_code == 301
    assert response.headers["location"] == "https://www.google.com"
    assert response.headers["cache-control"] == "public, max-age=300"


@pytest.mark.asyncio
async def test_redirect_invalid_id(client: AsyncClient) -> None:
    response = await client.get("/nonexistent", follow_redirects=False)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_redirect_expired_link(client: AsyncClient, make_record) -> None:
    make_record("old123", expires_at="2000-01-01T00:00:00Z")

    response = await client.get("/old123", follow_redirects=False)
    assert response.status_code == 410
    assert response.json()["error"] == "expired"


@pytest.mark.asyncio
async def test_redirect_increments_clicks(client: AsyncClient, manager, auth_headers) -> None:
    short_id = await shorten(client, auth_headers, original_url="https://www.python.org")

    for _ in range(3):
        await client.get(f"/{short_id}", follow_redirects=False)
    assert await manager.dispatcher.drain(timeout=1.0)

    stats_resp = await client.get(f"{URLS}/{short_id}", headers=auth_headers)
    assert stats_resp.status_code == 200
    assert stats_resp.json()["click_count"] == 3
    assert stats_resp.json()["last_accessed_at"] is not None


@pytest.mark.asyncio
async def test_redirect_with_custom_id(client: AsyncClient, auth_headers) -> None:
    await shorten(client, auth_headers, original_url="https://www.github.com", custom_id="ghub")

    response = await client.get("/ghub", follow_redirects=False)
    assert response.status_code == 301
    assert response.headers["location"] == "https://www.github.com"


@pytest.mark.asyncio
async def test_redirect_does_not_shadow_api_routes(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert "status" in response.json()


@pytest.mark.asyncio
async def test_qr_code_redirect(client: AsyncClient, auth_headers) -> None:
    short_id = await shorten(client, auth_headers, original_url="https://example.com")

    response = await client.get(f"{URLS}/{short_id}/qr", follow_redirects=False)

    assert response.status_code == 301
    location = urlsplit(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "https://api.qrserver.com/v1/create-qr-code/"
    query = parse_qs(location.query)
    assert query["size"] == ["200x200"]
    assert query["data"] == [f"http://sho.rt/{short_id}"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("size", "expected"),
    [("300", "300x300"), ("10", "50x50"), ("5000", "1000x1000"), ("big", "200x200"), ("50", "50x50")],
)
async def test_qr_code_size_is_clamped(client: AsyncClient, auth_headers, size: str, expected: str) -> None:
    short_id = await shorten(client, auth_headers, original_url="https://example.com")

    response = await client.get(f"{URLS}/{short_id}/qr", params={"size": size}, follow_redirects=False)

    assert parse_qs(urlsplit(response.headers["location"]).query)["size"] == [expected]


@pytest.mark.asyncio
async def test_qr_code_unknown_id(client: AsyncClient) -> None:
    response = await client.get(f"{URLS}/nope12/qr", follow_redirects=False)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_qr_code_does_not_count_clicks(client: AsyncClient, manager, store, auth_headers) -> None:
    short_id = await shorten(client, auth_headers, original_url="https://example.com")

    await client.get(f"{URLS}/{short_id}/qr", follow_redirects=False)
    await manager.dispatcher.drain()

    assert store.records[short_id].click_count == 0
