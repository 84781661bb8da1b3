"""Links API behavior tests."""

import re

import pytest
from httpx import AsyncClient

from tinylink.config import Settings
from tinylink.database import create_engine, create_session_factory
from tinylink.dependencies import ServiceManager

LINK_FIELDS = {"code", "target_url", "total_clicks", "last_clicked", "created_at"}


@pytest.mark.asyncio
async def test_create_with_generated_code(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://example.com"})

    assert response.status_code == 201
    data = response.json()
    assert set(data) == LINK_FIELDS
    assert re.fullmatch(r"[A-Za-z0-9]{6}", data["code"])
    assert data["target_url"] == "https://example.com"
    assert data["total_clicks"] == 0
    assert data["last_clicked"] is None


@pytest.mark.asyncio
async def test_create_with_custom_code(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://www.github.com", "code": "mycode"})

    assert response.status_code == 201
    assert response.json()["code"] == "mycode"


@pytest.mark.asyncio
async def test_create_blank_code_generates_one(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://www.github.com", "code": "  "})

    assert response.status_code == 201
    assert re.fullmatch(r"[A-Za-z0-9]{6}", response.json()["code"])


@pytest.mark.asyncio
async def test_create_code_too_short(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://x.com", "code": "ab"})

    assert response.status_code == 400
    assert "6-8 characters" in response.json()["detail"]


@pytest.mark.asyncio
async def test_create_code_too_long(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://x.com", "code": "a" * 9})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_code_non_alphanumeric(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://x.com", "code": "my-code!"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_reserved_code(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "https://x.com", "code": "healthz"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/api/links", json={"url": "not-a-url", "code": "abcdef"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid URL"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"url": ""}, {"url": "ftp://example.com/file"}])
async def test_create_missing_or_unsupported_url(client: AsyncClient, body: dict) -> None:
    response = await client.post("/api/links", json=body)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_malformed_body(client: AsyncClient) -> None:
    response = await client.post(
        "/api/links", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_duplicate_code(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://www.github.com", "code": "taken1"})

    response = await client.post("/api/links", json={"url": "https://www.example.com", "code": "taken1"})

    assert response.status_code == 409
    stats = await client.get("/api/links/taken1")
    assert stats.json()["target_url"] == "https://www.github.com"


@pytest.mark.asyncio
async def test_get_link(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://www.python.org", "code": "pyorg1"})

    response = await client.get("/api/links/pyorg1")

    assert response.status_code == 200
    data = response.json()
    assert data["code"] == "pyorg1"
    assert data["target_url"] == "https://www.python.org"
    assert data["total_clicks"] == 0
    assert data["created_at"]


@pytest.mark.asyncio
async def test_get_link_not_found(client: AsyncClient) -> None:
    response = await client.get("/api/links/nothere")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_newest_first(client: AsyncClient) -> None:
    for code in ("older1", "middle", "newer1"):
        await client.post("/api/links", json={"url": f"https://example.com/{code}", "code": code})

    response = await client.get("/api/links")

    assert response.status_code == 200
    assert [link["code"] for link in response.json()] == ["newer1", "middle", "older1"]


@pytest.mark.asyncio
async def test_list_search(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://github.com/org", "code": "ghorg1"})
    await client.post("/api/links", json={"url": "https://example.com", "code": "exmpl1"})

    response = await client.get("/api/links", params={"search": "GITHUB"})

    assert response.status_code == 200
    assert [link["code"] for link in response.json()] == ["ghorg1"]


@pytest.mark.asyncio
async def test_list_empty(client: AsyncClient) -> None:
    response = await client.get("/api/links")

    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_delete_link(client: AsyncClient) -> None:
    await client.post("/api/links", json={"url": "https://example.com", "code": "delme1"})

    response = await client.delete("/api/links/delme1")

    assert response.status_code == 204
    assert response.content == b""
    assert (await client.get("/api/links/delme1")).status_code == 404
    assert (await client.delete("/api/links/delme1")).status_code == 404


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient) -> None:
    response = await client.get("/api/links", headers={"X-Request-ID": "req-42"})
    assert response.headers["x-request-id"] == "req-42"

    generated = await client.get("/api/links")
    assert generated.headers["x-request-id"]


@pytest.mark.asyncio
async def test_storage_failure_hides_details(services: ServiceManager, client: AsyncClient) -> None:
    broken_engine = create_engine(Settings(APP_ENV="test", DATABASE_URL="sqlite+aiosqlite:////nonexistent-dir/tinylink.db"))
    services.session_factory = create_session_factory(broken_engine)
    try:
        response = await client.get("/api/links")
    finally:
        await broken_engine.dispose()

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
