import httpx
import asyncio
from typing import List, Dict, Any, Optional
import time as _time
from visiotech_sync.core.config import settings
from visiotech_sync.core.exceptions import (
    ConfigurationError,
    ShopifyAPIError,
    ShopifyRateLimitError,
    classify_graphql_errors,
    classify_http_error,
    classify_user_errors,
)
from visiotech_sync.models.shopify import ExistingProduct, ProductIndex, ShopifyProduct
from visiotech_sync.utils.helpers import dig, gid_to_numeric_id, to_gid
import logging

logger = logging.getLogger(__name__)

RETRY_STATUSES = (429, 500, 502, 503, 504)
# Failures that happen before the request reaches Shopify
NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

VARIANT_INDEX_QUERY = (
    "query($first:Int!,$after:String) { "
    "  productVariants(first: $first, after: $after) { "
    "    pageInfo { hasNextPage endCursor } "
    "    nodes { id sku inventoryItem { id } product { id handle } } "
    "  } "
    "}"
)

PRODUCT_CREATE = (
    "mutation productCreate($product: ProductCreateInput!) { "
    "  productCreate(product: $product) { "
    "    product { id handle variants(first: 1) { nodes { id inventoryItem { id } } } } "
    "    userErrors { field message } "
    "  } "
    "}"
)

PRODUCT_UPDATE = (
    "mutation productUpdate($product: ProductUpdateInput!) { "
    "  productUpdate(product: $product) { "
    "    product { id handle } "
    "    userErrors { field message } "
    "  } "
    "}"
)

VARIANTS_BULK_UPDATE = (
    "mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) { "
    "  productVariantsBulkUpdate(productId: $productId, variants: $variants) { "
    "    productVariants { id sku price inventoryItem { id } } "
    "    userErrors { field message code } "
    "  } "
    "}"
)

INVENTORY_SET = (
    "mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) { "
    "  inventorySetQuantities(input: $input) { "
    "    inventoryAdjustmentGroup { id } "
    "    userErrors { field message code } "
    "  } "
    "}"
)

PRODUCT_CREATE_MEDIA = (
    "mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) { "
    "  productCreateMedia(productId: $productId, media: $media) { "
    "    media { id } "
    "    mediaUserErrors { field message code } "
    "  } "
    "}"
)

LOCATIONS_QUERY = "{ locations(first: 10) { nodes { id isActive } } }"


class ShopifyService:
    def __init__(self, shop_url: Optional[str] = None, access_token: Optional[str] = None,
                 api_version: Optional[str] = None, location_id: Optional[str] = None,
                 request_delay: Optional[float] = None, max_retries: Optional[int] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.shop_url = (shop_url if shop_url is not None else settings.shop_url).rstrip('/')
        self.access_token = access_token if access_token is not None else settings.shopify_access_token
        self.api_version = api_version or settings.shopify_api_version
        self.request_delay = settings.request_delay if request_delay is None else request_delay
        self.max_retries = settings.max_retries if max_retries is None else max(0, max_retries)
        self.timeout = settings.request_timeout
        self.headers = {
            'Content-Type': 'application/json',
            'X-Shopify-Access-Token': self.access_token
        }
        self._transport = transport
        self._location_id: Optional[str] = to_gid('Location', location_id or settings.shopify_location_id)
        self._last_call_ts: float = 0.0

    def ensure_configured(self) -> None:
        missing = []
        if not self.shop_url:
            missing.append('SHOPIFY_STORE')
        if not self.access_token:
            missing.append('SHOPIFY_ACCESS_TOKEN')
        if missing:
            raise ConfigurationError(f"Missing Shopify settings: {', '.join(missing)}")

    def open_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout)

    async def _pace(self) -> None:
        """Keep at least ``request_delay`` seconds between two API calls."""
        since = _time.time() - self._last_call_ts
        if since < self.request_delay:
            await asyncio.sleep(self.request_delay - since)
        self._last_call_ts = _time.time()

    @staticmethod
    def _retry_wait(resp: Optional[httpx.Response], backoff: float) -> float:
        retry_after = resp.headers.get('Retry-After') if resp is not None else None
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                return backoff
        return backoff

    async def _rest_call(self, client: httpx.AsyncClient, method: str, path: str, json: Optional[Dict[str, Any]] = None,
                         step: Optional[str] = None, idempotent: bool = True) -> httpx.Response:
        """Rate-limited REST call with retry/backoff for 429/5xx.
        Path should be like f"/admin/api/{self.api_version}/..."

        Non-idempotent calls (creates) are only retried when the request is
        known not to have been processed: 429, or a connection that never opened.
        """
        url = f"{self.shop_url}{path}"
        attempts = self.max_retries + 1
        backoff = 0.6
        resp: Optional[httpx.Response] = None
        for attempt in range(attempts):
            await self._pace()
            try:
                resp = await client.request(method.upper(), url, headers=self.headers, json=json)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if not idempotent and not isinstance(e, NOT_SENT_ERRORS):
                    raise ShopifyAPIError(f"{method} {path} failed ({e.__class__.__name__}), not retried", step=step) from e
                logger.warning(f"{method} {path} failed ({e.__class__.__name__}), attempt {attempt + 1}/{attempts}")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 8)
                continue
            if resp.status_code in RETRY_STATUSES and (idempotent or resp.status_code == 429):
                wait_s = self._retry_wait(resp, backoff)
                logger.warning(f"{method} {path} returned {resp.status_code}, retrying in {wait_s:.1f}s")
                await asyncio.sleep(wait_s)
                backoff = min(backoff * 2, 8)
                continue
            if resp.status_code >= 400:
                raise classify_http_error(resp.status_code, resp.text, step=step)
            return resp
        if resp is None:
            raise ShopifyAPIError(f"{method} {path}: no response after {attempts} attempts", step=step)
        raise classify_http_error(resp.status_code, resp.text, step=step)

    async def _graphql(self, client: httpx.AsyncClient, query: str, variables: Optional[Dict[str, Any]] = None,
                       step: Optional[str] = None, idempotent: bool = True) -> Dict[str, Any]:
        """Run a GraphQL call and return its ``data``; throttling is retried, other errors raised.

        Mutations that create things pass ``idempotent=False``: a 5xx or a
        dropped connection may hide a create that went through, so those are
        raised instead of retried.
        """
        payload: Dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables
        url = f"{self.shop_url}/admin/api/{self.api_version}/graphql.json"
        attempts = self.max_retries + 1
        backoff = 0.5
        last_error: Optional[ShopifyAPIError] = None
        for attempt in range(attempts):
            await self._pace()
            try:
                resp = await client.post(url, headers=self.headers, json=payload)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = ShopifyAPIError(f"GraphQL transport error: {e}", step=step)
                if not idempotent and not isinstance(e, NOT_SENT_ERRORS):
                    raise last_error from e
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 8)
                continue
            if resp.status_code in RETRY_STATUSES and (idempotent or resp.status_code == 429):
                last_error = classify_http_error(resp.status_code, resp.text, step=step)
                await asyncio.sleep(self._retry_wait(resp, backoff))
                backoff = min(backoff * 2, 8)
                continue
            if resp.status_code != 200:
                raise classify_http_error(resp.status_code, resp.text, step=step)

            data = resp.json() or {}
            if isinstance(data.get("errors"), list) and data["errors"]:
                error = classify_graphql_errors(data["errors"], step=step)
                # Throttled queries are rejected before execution
                if isinstance(error, ShopifyRateLimitError):
                    last_error = error
                    logger.warning(f"GraphQL throttled during {step or 'query'}, retrying in {backoff:.1f}s")
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, 8)
                    continue
                raise error

            # Slow down when the leaky bucket is nearly empty
            throttle = dig(data, "extensions", "cost", "throttleStatus") or {}
            remaining = throttle.get("currentlyAvailable")
            restore_rate = throttle.get("restoreRate") or 1
            if isinstance(remaining, (int, float)) and remaining < 100:
                await asyncio.sleep(max(1, int(100 / max(restore_rate, 1))))
            return data.get("data") or {}

        if last_error is None:
            last_error = ShopifyRateLimitError("GraphQL call gave up after retries", step=step)
        raise last_error

    @staticmethod
    def _raise_user_errors(payload: Optional[Dict[str, Any]], key: str = "userErrors", step: Optional[str] = None) -> None:
        errors = (payload or {}).get(key) or []
        if errors:
            raise classify_user_errors(errors, step=step)

    async def test_connection(self) -> bool:
        """Test Shopify API connection"""
        try:
            async with self.open_client() as client:
                response = await client.get(
                    f"{self.shop_url}/admin/api/{self.api_version}/shop.json",
                    headers={'X-Shopify-Access-Token': self.access_token}
                )
                if response.status_code != 200:
                    logger.error(f"Shopify connection test non-200: {response.status_code} - {response.text}")
                return response.status_code == 200
        except Exception as e:
            logger.error(f"Shopify connection test failed: {str(e)}")
            return False

    async def fetch_product_index(self, client: httpx.AsyncClient, page_size: int = 250) -> ProductIndex:
        """List every variant (cursor pagination) and index products by SKU and handle."""
        index = ProductIndex()
        after: Optional[str] = None
        pages = 0
        while True:
            data = await self._graphql(client, VARIANT_INDEX_QUERY, {"first": page_size, "after": after},
                                       step="index")
            connection = data.get("productVariants") or {}
            for node in connection.get("nodes") or []:
                product = node.get("product") or {}
                if not product.get("id"):
                    continue
                sku = (node.get("sku") or "").strip() or None
                index.add(ExistingProduct(
                    product_id=product["id"],
                    variant_id=node.get("id"),
                    inventory_item_id=dig(node, "inventoryItem", "id"),
                    handle=product.get("handle"),
                    sku=sku,
                ))
            pages += 1
            page_info = connection.get("pageInfo") or {}
            if page_info.get("hasNextPage") and page_info.get("endCursor"):
                after = page_info["endCursor"]
                continue
            break
        logger.info(f"Indexed {len(index.by_sku)} SKUs / {len(index.by_handle)} handles from Shopify ({pages} pages)")
        return index

    async def get_location_id(self, client: httpx.AsyncClient) -> str:
        if self._location_id:
            return self._location_id
        data = await self._graphql(client, LOCATIONS_QUERY, step="locations")
        nodes = dig(data, "locations", "nodes") or []
        if not nodes:
            raise ConfigurationError("Store has no locations; set SHOPIFY_LOCATION_ID")
        primary = next((n for n in nodes if n.get("isActive")), nodes[0])
        self._location_id = primary["id"]
        logger.info(f"Using inventory location {self._location_id}")
        return self._location_id

    # ----------------- GraphQL create / update -----------------
    @staticmethod
    def _product_input(product: ShopifyProduct) -> Dict[str, Any]:
        return {
            "title": product.title,
            "handle": product.handle,
            "descriptionHtml": product.body_html,
            "vendor": product.vendor,
            "productType": product.product_type,
            "tags": product.tags,
            "status": product.status.upper(),
        }

    @staticmethod
    def _variant_input(variant_id: str, product: ShopifyProduct) -> Dict[str, Any]:
        variant = product.variants[0]
        inventory_item: Dict[str, Any] = {"sku": variant.sku, "tracked": variant.inventory_management == 'shopify'}
        if variant.cost:
            inventory_item["cost"] = variant.cost
        if variant.weight:
            inventory_item["measurement"] = {"weight": {"value": variant.weight, "unit": "KILOGRAMS"}}
        return {
            "id": variant_id,
            "price": variant.price,
            "compareAtPrice": variant.compare_at_price,
            "barcode": variant.barcode,
            "inventoryPolicy": (variant.inventory_policy or 'deny').upper(),
            "inventoryItem": inventory_item,
        }

    async def _update_variant(self, client: httpx.AsyncClient, product_id: str, variant_id: str,
                              product: ShopifyProduct) -> Optional[str]:
        data = await self._graphql(client, VARIANTS_BULK_UPDATE, {
            "productId": product_id,
            "variants": [self._variant_input(variant_id, product)],
        }, step="variant")
        payload = data.get("productVariantsBulkUpdate")
        self._raise_user_errors(payload, step="variant")
        variants = (payload or {}).get("productVariants") or []
        return dig(variants[0], "inventoryItem", "id") if variants else None

    async def _set_inventory(self, client: httpx.AsyncClient, inventory_item_id: str, quantity: int) -> None:
        location_id = await self.get_location_id(client)
        data = await self._graphql(client, INVENTORY_SET, {"input": {
            "name": "available",
            "reason": "correction",
            "ignoreCompareQuantity": True,
            "quantities": [{
                "inventoryItemId": inventory_item_id,
                "locationId": location_id,
                "quantity": int(quantity),
            }],
        }}, step="inventory")
        self._raise_user_errors(data.get("inventorySetQuantities"), step="inventory")

    async def _attach_images(self, client: httpx.AsyncClient, product_id: str, product: ShopifyProduct) -> int:
        if not product.images:
            return 0
        media = [{
            "originalSource": image.src,
            "alt": image.alt or product.title,
            "mediaContentType": "IMAGE",
        } for image in product.images]
        data = await self._graphql(client, PRODUCT_CREATE_MEDIA, {"productId": product_id, "media": media},
                                   step="media", idempotent=False)
        payload = data.get("productCreateMedia")
        self._raise_user_errors(payload, key="mediaUserErrors", step="media")
        return len((payload or {}).get("media") or [])

    async def create_product(self, client: httpx.AsyncClient, product: ShopifyProduct) -> Dict[str, Any]:
        """Create skeleton -> set variant price/SKU/barcode -> set stock -> attach images.

        Steps after the skeleton are not rolled back on failure; the result is
        reported as ``partial`` with the step that failed.
        """
        data = await self._graphql(client, PRODUCT_CREATE, {"product": self._product_input(product)}, step="create",
                                   idempotent=False)
        payload = data.get("productCreate")
        self._raise_user_errors(payload, step="create")
        created = (payload or {}).get("product") or {}
        product_id = created.get("id")
        if not product_id:
            raise ShopifyAPIError(f"productCreate returned no product for {product.handle}", step="create")
        variant_nodes = dig(created, "variants", "nodes") or []
        variant_id = variant_nodes[0].get("id") if variant_nodes else None
        inventory_item_id = dig(variant_nodes[0], "inventoryItem", "id") if variant_nodes else None

        result = {
            'status': 'created',
            'sku': product.sku,
            'handle': product.handle,
            'product_id': product_id,
            'title': product.title,
        }
        try:
            if not variant_id:
                raise ShopifyAPIError("created product has no default variant", step="variant")
            inventory_item_id = await self._update_variant(client, product_id, variant_id, product) or inventory_item_id
            if inventory_item_id and product.variants[0].inventory_management == 'shopify':
                await self._set_inventory(client, inventory_item_id, product.variants[0].inventory_quantity)
            result['images'] = await self._attach_images(client, product_id, product)
        except ShopifyAPIError as e:
            logger.error(f"Product {product.handle} created but step '{e.step}' failed: {str(e)}")
            result.update({'status': 'partial', 'step': e.step, 'error': str(e)})
        result['variant_id'] = variant_id
        result['inventory_item_id'] = inventory_item_id
        return result

    async def update_product(self, client: httpx.AsyncClient, existing: ExistingProduct,
                             product: ShopifyProduct) -> Dict[str, Any]:
        """Update product fields, the variant and its stock. Media are left untouched."""
        product_input = self._product_input(product)
        product_input["id"] = existing.product_id
        # Keep the store's handle; it may differ when matched by SKU
        product_input.pop("handle", None)
        data = await self._graphql(client, PRODUCT_UPDATE, {"product": product_input}, step="update")
        self._raise_user_errors(data.get("productUpdate"), step="update")

        result = {
            'status': 'updated',
            'sku': product.sku,
            'handle': existing.handle or product.handle,
            'product_id': existing.product_id,
            'title': product.title,
        }
        try:
            inventory_item_id = existing.inventory_item_id
            if existing.variant_id:
                inventory_item_id = await self._update_variant(client, existing.product_id, existing.variant_id,
                                                               product) or inventory_item_id
            if inventory_item_id and product.variants[0].inventory_management == 'shopify':
                await self._set_inventory(client, inventory_item_id, product.variants[0].inventory_quantity)
        except ShopifyAPIError as e:
            logger.error(f"Product {product.handle} updated but step '{e.step}' failed: {str(e)}")
            result.update({'status': 'partial', 'step': e.step, 'error': str(e)})
        return result

    # ----------------- REST create / update -----------------
    @staticmethod
    def _rest_product_payload(product: ShopifyProduct, include_images: bool = True) -> Dict[str, Any]:
        variant = product.variants[0]
        body: Dict[str, Any] = {
            "title": product.title,
            "handle": product.handle,
            "body_html": product.body_html,
            "vendor": product.vendor,
            "product_type": product.product_type,
            "tags": ", ".join(product.tags),
            "status": product.status,
            "variants": [{
                "price": variant.price,
                "sku": variant.sku,
                "barcode": variant.barcode,
                "compare_at_price": variant.compare_at_price,
                "inventory_management": variant.inventory_management,
                "inventory_policy": variant.inventory_policy,
                "weight": variant.weight,
                "weight_unit": variant.weight_unit,
            }],
        }
        if include_images and product.images:
            body["images"] = [img.model_dump(exclude_none=True) for img in product.images]
        return body

    async def _set_inventory_rest(self, client: httpx.AsyncClient, inventory_item_id: Any, quantity: int) -> None:
        location_id = gid_to_numeric_id(await self.get_location_id(client))
        await self._rest_call(client, 'POST', f"/admin/api/{self.api_version}/inventory_levels/set.json", json={
            "location_id": location_id,
            "inventory_item_id": gid_to_numeric_id(to_gid('InventoryItem', inventory_item_id)),
            "available": int(quantity),
        }, step="inventory")

    async def create_product_rest(self, client: httpx.AsyncClient, product: ShopifyProduct) -> Dict[str, Any]:
        """Single-call create via POST products.json, then the stock level."""
        resp = await self._rest_call(client, 'POST', f"/admin/api/{self.api_version}/products.json",
                                     json={"product": self._rest_product_payload(product)}, step="create",
                                     idempotent=False)
        created = (resp.json() or {}).get('product') or {}
        variants = created.get('variants') or []
        product_id = to_gid('Product', created.get('id'))
        variant_id = to_gid('ProductVariant', variants[0].get('id')) if variants else None
        inventory_item_id = to_gid('InventoryItem', variants[0].get('inventory_item_id')) if variants else None
        result = {
            'status': 'created',
            'sku': product.sku,
            'handle': created.get('handle') or product.handle,
            'product_id': product_id,
            'title': product.title,
            'variant_id': variant_id,
            'inventory_item_id': inventory_item_id,
        }
        try:
            if inventory_item_id and product.variants[0].inventory_management == 'shopify':
                await self._set_inventory_rest(client, inventory_item_id, product.variants[0].inventory_quantity)
        except ShopifyAPIError as e:
            logger.error(f"Product {product.handle} created but step '{e.step}' failed: {str(e)}")
            result.update({'status': 'partial', 'step': e.step, 'error': str(e)})
        return result

    async def update_product_rest(self, client: httpx.AsyncClient, existing: ExistingProduct,
                                  product: ShopifyProduct) -> Dict[str, Any]:
        numeric_id = gid_to_numeric_id(existing.product_id)
        body = self._rest_product_payload(product, include_images=False)
        body["id"] = numeric_id
        body.pop("handle", None)
        if existing.variant_id:
            body["variants"][0]["id"] = gid_to_numeric_id(existing.variant_id)
        await self._rest_call(client, 'PUT', f"/admin/api/{self.api_version}/products/{numeric_id}.json",
                              json={"product": body}, step="update")
        result = {
            'status': 'updated',
            'sku': product.sku,
            'handle': existing.handle or product.handle,
            'product_id': existing.product_id,
            'title': product.title,
        }
        try:
            # Product PUT ignores inventory quantities
            if existing.inventory_item_id and product.variants[0].inventory_management == 'shopify':
                await self._set_inventory_rest(client, existing.inventory_item_id, product.variants[0].inventory_quantity)
        except ShopifyAPIError as e:
            logger.error(f"Product {product.handle} updated but step '{e.step}' failed: {str(e)}")
            result.update({'status': 'partial', 'step': e.step, 'error': str(e)})
        return result

    async def upsert_product(self, client: httpx.AsyncClient, product: ShopifyProduct, index: ProductIndex,
                             api_mode: str = "graphql") -> Dict[str, Any]:
        """Create or update one product, keyed by SKU (handle as fallback), and keep the index current."""
        existing = index.find(product)
        rest = api_mode == "rest"
        if existing:
            if rest:
                return await self.update_product_rest(client, existing, product)
            return await self.update_product(client, existing, product)

        result = await (self.create_product_rest(client, product) if rest else self.create_product(client, product))
        if result.get('product_id'):
            index.add(ExistingProduct(
                product_id=result['product_id'],
                variant_id=result.get('variant_id'),
                inventory_item_id=result.get('inventory_item_id'),
                handle=result.get('handle'),
                sku=product.sku,
            ))
        return result

    async def sync_products(self, products: List[ShopifyProduct], api_mode: str = "graphql",
                            index: Optional[ProductIndex] = None) -> List[Dict[str, Any]]:
        """Sequentially upsert products; one failing product never stops the run."""
        results: List[Dict[str, Any]] = []
        async with self.open_client() as client:
            if index is None:
                index = await self.fetch_product_index(client)
            for position, product in enumerate(products, start=1):
                try:
                    result = await self.upsert_product(client, product, index, api_mode)
                    logger.info(f"[{position}/{len(products)}] {product.key}: {result['status']}")
                except ShopifyAPIError as e:
                    logger.error(f"[{position}/{len(products)}] {product.key}: failed at {e.step or 'request'}: {str(e)}")
                    result = {
                        'status': 'error',
                        'sku': product.sku,
                        'handle': product.handle,
                        'step': e.step,
                        'error': str(e),
                        'error_type': e.__class__.__name__,
                    }
                except ConfigurationError:
                    raise
                except Exception as e:
                    logger.error(f"[{position}/{len(products)}] {product.key}: unexpected error: {str(e)}")
                    result = {
                        'status': 'error',
                        'sku': product.sku,
                        'handle': product.handle,
                        'error': str(e),
                        'error_type': e.__class__.__name__,
                    }
                results.append(result)
        return results


shopify_service = ShopifyService()
