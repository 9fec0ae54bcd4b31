import json

import httpx
import pytest

from visiotech_sync.core.exceptions import (
    ConfigurationError,
    ShopifyAPIError,
    ShopifyDuplicateError,
    ShopifyUserError,
)
from visiotech_sync.models.shopify import (
    ExistingProduct,
    ProductIndex,
    ShopifyImage,
    ShopifyProduct,
    ShopifyVariant,
)
from visiotech_sync.services.shopify_service import ShopifyService

SHOP = "https://test-store.myshopify.com"


def _product(sku="HUB2-W", images=2):
    return ShopifyProduct(
        title="Hub 2",
        handle=sku.lower(),
        body_html="<p>Hub</p>",
        vendor="Ajax",
        product_type="Centrais de Alarme",
        tags=["Ajax"],
        variants=[ShopifyVariant(price="123.00", sku=sku, barcode="8430000000000", inventory_quantity=10,
                                 compare_at_price="184.50", cost="80.00", weight=0.35)],
        images=[ShopifyImage(src=f"https://img.example/{i}.jpg", position=i, alt="Hub 2")
                for i in range(1, images + 1)],
    )


def _service(handler, **kwargs):
    kwargs.setdefault("location_id", "1")
    return ShopifyService(shop_url=SHOP, access_token="shpat_test", api_version="2025-07", request_delay=0,
                          transport=httpx.MockTransport(handler), **kwargs)


def _graphql_handler(responses, calls):
    """Answer GraphQL calls from ``responses`` ([(marker, payload or [payloads])]) matched on the query text."""
    queues = [(marker, list(payload) if isinstance(payload, list) else [payload]) for marker, payload in responses]

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append(body)
        for marker, queue in queues:
            if marker in body["query"]:
                payload = queue.pop(0) if len(queue) > 1 else queue[0]
                return httpx.Response(200, json=payload)
        return httpx.Response(400, json={"errors": [{"message": "unexpected query"}]})

    return handler


CREATE_OK = {"data": {"productCreate": {
    "product": {"id": "gid://shopify/Product/1", "handle": "hub2-w", "variants": {"nodes": [
        {"id": "gid://shopify/ProductVariant/11", "inventoryItem": {"id": "gid://shopify/InventoryItem/111"}}]}},
    "userErrors": []}}}
VARIANT_OK = {"data": {"productVariantsBulkUpdate": {
    "productVariants": [{"id": "gid://shopify/ProductVariant/11", "sku": "HUB2-W", "price": "123.00",
                         "inventoryItem": {"id": "gid://shopify/InventoryItem/111"}}],
    "userErrors": []}}}
INVENTORY_OK = {"data": {"inventorySetQuantities": {"inventoryAdjustmentGroup": {"id": "gid://x"}, "userErrors": []}}}
MEDIA_OK = {"data": {"productCreateMedia": {"media": [{"id": "m1"}, {"id": "m2"}], "mediaUserErrors": []}}}
UPDATE_OK = {"data": {"productUpdate": {"product": {"id": "gid://shopify/Product/9", "handle": "old"},
                                        "userErrors": []}}}


def _queries(calls):
    return [c["query"].split("(", 1)[0].split()[-1] for c in calls]


@pytest.mark.anyio
async def test_test_connection_ok():
    def handler(request):
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
        assert request.url.path == "/admin/api/2025-07/shop.json"
        return httpx.Response(200, json={"shop": {"name": "Test"}})

    assert await _service(handler).test_connection() is True


@pytest.mark.anyio
async def test_test_connection_failed():
    assert await _service(lambda r: httpx.Response(401, text="bad token")).test_connection() is False


def test_ensure_configured_lists_missing_settings():
    svc = ShopifyService(shop_url="", access_token="")
    with pytest.raises(ConfigurationError) as e:
        svc.ensure_configured()
    assert "SHOPIFY_STORE" in str(e.value)
    assert "SHOPIFY_ACCESS_TOKEN" in str(e.value)


@pytest.mark.anyio
async def test_fetch_product_index_paginates():
    pages = [
        {"data": {"productVariants": {
            "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
            "nodes": [{"id": "gid://shopify/ProductVariant/1", "sku": "A-1", "inventoryItem": {"id": "inv1"},
                       "product": {"id": "gid://shopify/Product/1", "handle": "a-1"}}]}}},
        {"data": {"productVariants": {
            "pageInfo": {"hasNextPage": False, "endCursor": None},
            "nodes": [{"id": "gid://shopify/ProductVariant/2", "sku": "", "inventoryItem": {"id": "inv2"},
                       "product": {"id": "gid://shopify/Product/2", "handle": "no-sku"}}]}}},
    ]
    calls = []
    svc = _service(_graphql_handler([("productVariants(first", pages)], calls))

    async with svc.open_client() as client:
        index = await svc.fetch_product_index(client, page_size=1)

    assert len(calls) == 2
    assert calls[1]["variables"] == {"first": 1, "after": "c1"}
    assert index.by_sku["A-1"].inventory_item_id == "inv1"
    assert "no-sku" in index.by_handle
    assert len(index) == 1


@pytest.mark.anyio
async def test_create_product_runs_all_steps():
    calls = []
    svc = _service(_graphql_handler([
        ("productCreateMedia", MEDIA_OK),
        ("productVariantsBulkUpdate", VARIANT_OK),
        ("inventorySetQuantities", INVENTORY_OK),
        ("productCreate(", CREATE_OK),
    ], calls))

    async with svc.open_client() as client:
        result = await svc.create_product(client, _product())

    assert result["status"] == "created"
    assert result["product_id"] == "gid://shopify/Product/1"
    assert result["inventory_item_id"] == "gid://shopify/InventoryItem/111"
    assert result["images"] == 2
    assert _queries(calls) == ["productCreate", "productVariantsBulkUpdate", "inventorySetQuantities",
                               "productCreateMedia"]

    product_input = calls[0]["variables"]["product"]
    assert product_input["handle"] == "hub2-w"
    assert product_input["status"] == "ACTIVE"
    variant_input = calls[1]["variables"]["variants"][0]
    assert variant_input["price"] == "123.00"
    assert variant_input["compareAtPrice"] == "184.50"
    assert variant_input["inventoryItem"] == {
        "sku": "HUB2-W", "tracked": True, "cost": "80.00",
        "measurement": {"weight": {"value": 0.35, "unit": "KILOGRAMS"}},
    }
    quantities = calls[2]["variables"]["input"]["quantities"][0]
    assert quantities == {"inventoryItemId": "gid://shopify/InventoryItem/111",
                          "locationId": "gid://shopify/Location/1", "quantity": 10}


@pytest.mark.anyio
async def test_create_product_reports_partial_when_variant_step_fails():
    variant_error = {"data": {"productVariantsBulkUpdate": {"productVariants": [], "userErrors": [
        {"field": ["variants", "0", "price"], "message": "Price is invalid", "code": "INVALID"}]}}}
    calls = []
    svc = _service(_graphql_handler([
        ("productVariantsBulkUpdate", variant_error),
        ("productCreate(", CREATE_OK),
    ], calls))

    async with svc.open_client() as client:
        result = await svc.create_product(client, _product())

    assert result["status"] == "partial"
    assert result["step"] == "variant"
    assert "variants.0.price: Price is invalid" in result["error"]
    assert _queries(calls) == ["productCreate", "productVariantsBulkUpdate"]


@pytest.mark.anyio
async def test_create_product_skeleton_error_raises():
    taken = {"data": {"productCreate": {"product": None, "userErrors": [
        {"field": ["handle"], "message": "Handle has already been taken"}]}}}
    svc = _service(_graphql_handler([("productCreate(", taken)], []))

    async with svc.open_client() as client:
        with pytest.raises(ShopifyUserError) as e:
            await svc.create_product(client, _product())
    assert e.value.step == "create"


@pytest.mark.anyio
async def test_location_is_looked_up_when_not_configured():
    locations = {"data": {"locations": {"nodes": [
        {"id": "gid://shopify/Location/7", "isActive": False},
        {"id": "gid://shopify/Location/8", "isActive": True}]}}}
    calls = []
    svc = _service(_graphql_handler([("locations", locations)], calls), location_id=None)
    svc._location_id = None

    async with svc.open_client() as client:
        assert await svc.get_location_id(client) == "gid://shopify/Location/8"
        assert await svc.get_location_id(client) == "gid://shopify/Location/8"
    assert len(calls) == 1


@pytest.mark.anyio
async def test_sync_products_updates_existing_by_sku():
    calls = []
    svc = _service(_graphql_handler([
        ("productVariantsBulkUpdate", VARIANT_OK),
        ("inventorySetQuantities", INVENTORY_OK),
        ("productUpdate(", UPDATE_OK),
    ], calls))
    index = ProductIndex()
    index.add(ExistingProduct(product_id="gid://shopify/Product/9", variant_id="gid://shopify/ProductVariant/99",
                              inventory_item_id="gid://shopify/InventoryItem/999", handle="old", sku="HUB2-W"))

    results = await svc.sync_products([_product()], index=index)

    assert results[0]["status"] == "updated"
    assert results[0]["handle"] == "old"
    assert _queries(calls) == ["productUpdate", "productVariantsBulkUpdate", "inventorySetQuantities"]
    update_input = calls[0]["variables"]["product"]
    assert update_input["id"] == "gid://shopify/Product/9"
    assert "handle" not in update_input
    # no media calls on update
    assert all("productCreateMedia" not in c["query"] for c in calls)


@pytest.mark.anyio
async def test_sync_products_builds_index_and_isolates_failures():
    empty_index = {"data": {"productVariants": {"pageInfo": {"hasNextPage": False}, "nodes": []}}}
    # productCreate userErrors select no code field
    taken = {"data": {"productCreate": {"product": None, "userErrors": [
        {"field": ["handle"], "message": "Handle has already been taken"}]}}}
    calls = []
    svc = _service(_graphql_handler([
        ("productVariants(first", empty_index),
        ("productCreateMedia", MEDIA_OK),
        ("productVariantsBulkUpdate", VARIANT_OK),
        ("inventorySetQuantities", INVENTORY_OK),
        ("productCreate(", [taken, CREATE_OK]),
    ], calls))

    results = await svc.sync_products([_product("DUP-1", images=0), _product("NEW-1", images=0)])

    assert [r["status"] for r in results] == ["error", "created"]
    assert results[0]["error_type"] == "ShopifyUserError"
    assert results[0]["error"] == "handle: Handle has already been taken"
    assert results[0]["step"] == "create"
    assert results[1]["sku"] == "NEW-1"


@pytest.mark.anyio
async def test_graphql_throttling_is_retried():
    throttled = {"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}
    calls = []
    svc = _service(_graphql_handler([("locations", [throttled, {"data": {"locations": {"nodes": [
        {"id": "gid://shopify/Location/3", "isActive": True}]}}}])], calls))
    svc._location_id = None

    async with svc.open_client() as client:
        assert await svc.get_location_id(client) == "gid://shopify/Location/3"
    assert len(calls) == 2


@pytest.mark.anyio
async def test_rest_create_and_inventory():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/products.json"):
            return httpx.Response(201, json={"product": {"id": 123, "handle": "hub2-w", "variants": [
                {"id": 456, "inventory_item_id": 789}]}})
        if request.url.path.endswith("/inventory_levels/set.json"):
            return httpx.Response(200, json={"inventory_level": {}})
        return httpx.Response(404)

    svc = _service(handler)
    results = await svc.sync_products([_product()], api_mode="rest", index=ProductIndex())

    assert results[0]["status"] == "created"
    assert results[0]["product_id"] == "gid://shopify/Product/123"
    body = json.loads(requests[0].content)["product"]
    assert body["variants"][0]["sku"] == "HUB2-W"
    assert body["tags"] == "Ajax"
    assert len(body["images"]) == 2
    assert json.loads(requests[1].content) == {"location_id": 1, "inventory_item_id": 789, "available": 10}


@pytest.mark.anyio
async def test_rest_update_uses_numeric_ids():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={})

    svc = _service(handler)
    existing = ExistingProduct(product_id="gid://shopify/Product/9", variant_id="gid://shopify/ProductVariant/99",
                               inventory_item_id="gid://shopify/InventoryItem/999", handle="old", sku="HUB2-W")
    async with svc.open_client() as client:
        result = await svc.update_product_rest(client, existing, _product())

    assert result["status"] == "updated"
    assert requests[0].method == "PUT"
    assert requests[0].url.path == "/admin/api/2025-07/products/9.json"
    body = json.loads(requests[0].content)["product"]
    assert body["id"] == 9
    assert body["variants"][0]["id"] == 99
    assert "images" not in body
    assert json.loads(requests[1].content)["inventory_item_id"] == 999


@pytest.mark.anyio
async def test_rest_call_retries_on_429():
    responses = [httpx.Response(429, headers={"Retry-After": "0"}, text="slow down"),
                 httpx.Response(200, json={"ok": True})]

    svc = _service(lambda request: responses.pop(0))
    async with svc.open_client() as client:
        resp = await svc._rest_call(client, "GET", "/admin/api/2025-07/shop.json")
    assert resp.json() == {"ok": True}
    assert responses == []


@pytest.mark.anyio
async def test_rest_call_raises_user_error_on_422():
    svc = _service(lambda request: httpx.Response(422, json={"errors": {"handle": ["taken"]}}))
    async with svc.open_client() as client:
        with pytest.raises(ShopifyUserError) as e:
            await svc._rest_call(client, "POST", "/admin/api/2025-07/products.json", json={}, step="create")
    assert e.value.status_code == 422
    assert e.value.step == "create"


@pytest.mark.anyio
async def test_variant_duplicate_code_raises_duplicate_error():
    duplicate = {"data": {"productVariantsBulkUpdate": {"productVariants": [], "userErrors": [
        {"field": ["variants", "0", "sku"], "message": "SKU already in use", "code": "TAKEN"}]}}}
    svc = _service(_graphql_handler([("productVariantsBulkUpdate", duplicate)], []))

    async with svc.open_client() as client:
        with pytest.raises(ShopifyDuplicateError) as e:
            await svc._update_variant(client, "gid://shopify/Product/1", "gid://shopify/ProductVariant/11",
                                      _product())
    assert e.value.step == "variant"


@pytest.mark.anyio
async def test_sync_products_does_not_update_another_sku_by_handle():
    index = ProductIndex()
    index.add(ExistingProduct(product_id="gid://shopify/Product/9", handle="ab-1", sku="AB-1"))
    calls = []
    svc = _service(_graphql_handler([
        ("productVariantsBulkUpdate", VARIANT_OK),
        ("inventorySetQuantities", INVENTORY_OK),
        ("productCreate(", CREATE_OK),
    ], calls))
    other = _product("AB_1", images=0).model_copy(update={"handle": "ab-1"})

    results = await svc.sync_products([other], index=index)

    assert results[0]["status"] == "created"
    assert results[0]["product_id"] == "gid://shopify/Product/1"
    assert "productUpdate" not in _queries(calls)
    assert index.by_sku["AB-1"].product_id == "gid://shopify/Product/9"


def test_index_handle_fallback_only_for_same_or_missing_sku():
    index = ProductIndex()
    index.add(ExistingProduct(product_id="gid://shopify/Product/1", handle="ab-1", sku="AB-1"))
    index.add(ExistingProduct(product_id="gid://shopify/Product/5", handle="legacy"))

    assert index.find(_product("AB_1").model_copy(update={"handle": "ab-1"})) is None
    assert index.find(_product("NEW").model_copy(update={"handle": "legacy"})).product_id == "gid://shopify/Product/5"
    assert index.find(_product("AB-1")).product_id == "gid://shopify/Product/1"


@pytest.mark.anyio
async def test_create_is_not_retried_after_server_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502, text="bad gateway")

    svc = _service(handler)
    async with svc.open_client() as client:
        with pytest.raises(ShopifyAPIError) as e:
            await svc.create_product(client, _product())
        assert e.value.status_code == 502
        with pytest.raises(ShopifyAPIError):
            await svc.create_product_rest(client, _product())
    assert len(calls) == 2


@pytest.mark.anyio
async def test_create_is_retried_after_429():
    responses = [httpx.Response(429, headers={"Retry-After": "0"}, text="slow down"),
                 httpx.Response(201, json={"product": {"id": 5, "handle": "hub2-w", "variants": []}})]

    svc = _service(lambda request: responses.pop(0))
    async with svc.open_client() as client:
        result = await svc.create_product_rest(client, _product())
    assert result["product_id"] == "gid://shopify/Product/5"
    assert responses == []


@pytest.mark.anyio
async def test_zero_max_retries_means_one_attempt():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    svc = _service(handler, max_retries=0)
    assert svc.max_retries == 0
    async with svc.open_client() as client:
        with pytest.raises(ShopifyAPIError) as e:
            await svc._rest_call(client, "GET", "/admin/api/2025-07/shop.json")
    assert e.value.status_code == 503
    assert len(calls) == 1
