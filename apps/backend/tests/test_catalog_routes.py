"""HTTP surface for the catalog."""
import pytest
from httpx import AsyncClient

from catalog.styles import CanonicalStyleRegistry


async def _seed(session, seed_product):
    registry = CanonicalStyleRegistry(session)
    await seed_product("PC43", name="Core Cotton Tee", brand="Port & Company", price=3.12, inventory=[("BLACK", "M", 6, [("1", 6)])])
    return await registry.ensure_canonical_style_link(
        "PRIMARY", "PC43", "PC43", display_name="Core Cotton Tee", brand="Port & Company"
    )


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "0.1.0"}
    assert response.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_search_endpoint(client: AsyncClient, session, seed_product):
    style = await _seed(session, seed_product)

    response = await client.get("/api/catalog/search", params={"q": "pc43"})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["style_number"] == "PC43"
    assert data["items"][0]["min_price"] == 3.12
    assert data["direct_hit"]["canonical_style_id"] == style.id


@pytest.mark.asyncio
async def test_search_rejects_unknown_sort(client: AsyncClient):
    response = await client.get("/api/catalog/search", params={"q": "pc43", "sort": "popularity"})

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_search_limit_bounds(client: AsyncClient):
    response = await client.get("/api/catalog/search", params={"q": "pc43", "limit": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_product_detail(client: AsyncClient, session, seed_product):
    style = await _seed(session, seed_product)

    response = await client.get(f"/api/products/{style.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["canonical_style"]["style_number"] == "PC43"
    entry = data["suppliers"][0]
    assert entry["supplier"] == "PRIMARY"
    assert entry["source"] == "database"
    assert entry["inventory"]["warehouses"] == [{"warehouse_id": "DAL", "warehouse_name": "Dallas, TX", "quantity": 0}]
    assert entry["product"]["colors"][0]["color_code"] == "BLACK"


@pytest.mark.asyncio
async def test_product_detail_not_found(client: AsyncClient):
    response = await client.get("/api/products/4040")

    assert response.status_code == 404
    assert response.json()["error"] == "ResourceNotFoundError"


@pytest.mark.asyncio
async def test_supplier_products(client: AsyncClient, session, seed_product):
    await _seed(session, seed_product)

    response = await client.get("/api/supplier-products/pc43")

    assert response.status_code == 200
    data = response.json()
    assert data["identifier"] == "PC43"
    assert data["canonical_style"]["style_number"] == "PC43"
    assert [entry["supplier"] for entry in data["products"]] == ["PRIMARY"]


@pytest.mark.asyncio
async def test_supplier_products_not_found(client: AsyncClient):
    response = await client.get("/api/supplier-products/NOPE")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_link_endpoint_is_idempotent_and_reports_conflicts(client: AsyncClient):
    payload = {"supplier": "REMOTE", "supplier_part_id": "b00760", "style_number": "5000", "brand": "Gildan"}

    first = await client.post("/api/catalog/links", json=payload)
    second = await client.post("/api/catalog/links", json=payload)
    conflict = await client.post("/api/catalog/links", json={**payload, "style_number": "5001"})
    invalid = await client.post("/api/catalog/links", json={**payload, "supplier": "ACME"})

    assert first.status_code == 200
    assert first.json()["style_number"] == "5000"
    assert second.json()["id"] == first.json()["id"]
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "ConflictError"
    assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_catalog_health_endpoint(client: AsyncClient, session, seed_product):
    await _seed(session, seed_product)

    response = await client.get("/api/internal/catalog/health")

    assert response.status_code == 200
    data = response.json()
    assert data["canonical_styles"] == 1
    assert data["supplier_links"] == 1
    assert data["remote_configured"] is True


@pytest.mark.asyncio
async def test_metrics_endpoint(client: AsyncClient):
    await client.get("/health")
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "catalog_http_requests_total" in response.text


@pytest.mark.asyncio
async def test_product_search_endpoint(client: AsyncClient, session, seed_product):
    await _seed(session, seed_product)

    response = await client.get("/api/products/search", params={"query": "core"})
    empty = await client.get("/api/products/search")

    assert response.status_code == 200
    assert response.json() == {"items": [{"supplier_part_id": "PC43", "name": "Core Cotton Tee", "brand": "Port & Company"}]}
    assert empty.json() == {"items": []}
