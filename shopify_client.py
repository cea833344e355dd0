# ============================================================================
#  shopify_client.py - Shopify API Handler
#  Version: 1.0.0
# ============================================================================
import requests
import logging
import time
from typing import Optional, Dict, List, Tuple
from urllib.parse import urlparse, parse_qs

from errors import PermissionDeniedError, ShopifyError, TransportError
from models import PublicationStatus, SyncTarget

logger = logging.getLogger(__name__)

SUPPLIER_NAMESPACE = "aliexpress"

PRODUCTS_QUERY = """query($first: Int!, $after: String, $query: String) {
  products(first: $first, after: $after, query: $query) {
    edges {
      cursor
      node {
        id title handle
        supplierId: metafield(namespace: "aliexpress", key: "product_id") { value }
        shipsFrom: metafield(namespace: "aliexpress", key: "ships_from") { value }
        variants(first: 1) { nodes { inventoryQuantity inventoryItem { id unitCost { amount } } } }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}"""

PUBLICATIONS_QUERY = """query($id: ID!) {
  product(id: $id) {
    resourcePublicationsV2(first: 20) {
      edges { node { isPublished publication { id name } } }
    }
  }
}"""

ALL_PUBLICATIONS_QUERY = "query { publications(first: 50) { edges { node { id name } } } }"

PUBLISH_MUTATION = """mutation publishablePublish($id: ID!, $input: [PublicationInput!]!) {
  publishablePublish(id: $id, input: $input) {
    publishable { ... on Product { id } }
    userErrors { field message }
  }
}"""

METAFIELDS_SET_MUTATION = """mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id key value }
    userErrors { field message }
  }
}"""

PageResult = Tuple[List[SyncTarget], Optional[str], bool]


def _numeric_id(gid: Optional[str]) -> Optional[str]:
    """gid://shopify/InventoryItem/42 -> 42 (REST wants the bare number)."""
    return gid.rsplit("/", 1)[-1] if gid else None


def _is_access_error(message: str, code: Optional[str] = None) -> bool:
    return code == "ACCESS_DENIED" or "ACCESS_DENIED" in message or "write_publications" in message


class ShopifyClient:
    def __init__(self, domain: str, token: str, version: str):
        """Initializes the Shopify Client with dual API support."""
        # Trim whitespace from token (common issue with env vars)
        token = token.strip() if token else ""

        self.admin_url = f"https://{domain}/admin/api/{version}/graphql.json"
        self.rest_url = f"https://{domain}/admin/api/{version}"
        self.headers = {
            "X-Shopify-Access-Token": token,
            "Content-Type": "application/json"
        }
        self.session = requests.Session()
        self.session.headers.update(self.headers)
        self.timeout = 30

        logger.info("=" * 80)
        logger.info("Shopify API Configuration:")
        logger.info(f"  Domain: {domain}")
        logger.info(f"  API Version: {version}")
        logger.info(f"  GraphQL URL: {self.admin_url}")
        logger.info(f"  REST URL: {self.rest_url}")
        logger.info(f"  Access Token: {'*' * min(len(token), 20)}... (hidden)")
        logger.info("=" * 80)

    def execute_graphql(self, query: str, variables: Optional[Dict] = None) -> Dict:
        """Executes GraphQL with backoff for THROTTLED status. Returns `data`."""
        payload = {"query": query, "variables": variables or {}}
        for attempt in range(3):
            try:
                response = self.session.post(self.admin_url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                result = response.json()
            except requests.RequestException as e:
                status_code = e.response.status_code if getattr(e, "response", None) is not None else None
                if status_code in (401, 403):
                    logger.error(f"Shopify authentication failed ({status_code})")
                    logger.error("  Please verify:")
                    logger.error("    1. Access token is correct and not expired")
                    logger.error("    2. Token has required scopes (write_products, write_publications, etc.)")
                    logger.error("    3. Store domain is correct in SHOPIFY_STORE_DOMAIN")
                    raise PermissionDeniedError(f"Shopify rejected the token: HTTP {status_code}") from e
                logger.error(f"GraphQL request error (attempt {attempt + 1}/3): {e}")
                if attempt == 2:
                    raise TransportError(f"Request failed: {e}") from e
                time.sleep((attempt + 1) * 2)
                continue
            except ValueError as e:
                raise TransportError(f"Invalid JSON from Shopify: {e}") from e

            errors = result.get("errors") or []
            if any(err.get("extensions", {}).get("code") == "THROTTLED" for err in errors):
                wait = (attempt + 1) * 5
                logger.warning(f"Throttled. Waiting {wait}s...")
                time.sleep(wait)
                continue
            if errors:
                messages = "; ".join(err.get("message", "") for err in errors)
                if any(_is_access_error(err.get("message", ""), err.get("extensions", {}).get("code")) for err in errors):
                    raise PermissionDeniedError(f"GraphQL access denied: {messages}")
                raise ShopifyError(f"GraphQL errors: {messages}")
            return result.get("data") or {}
        raise TransportError("Max retries exceeded (throttled)")

    # ---------------------------------------------------------------- reads

    def fetch_products_page(self, first: int, after: Optional[str] = None, query: str = "status:active") -> PageResult:
        """One page of products. Returns (targets, last cursor, has_next_page)."""
        data = self.execute_graphql(PRODUCTS_QUERY, {"first": first, "after": after, "query": query})
        products = data.get("products") or {}
        edges = products.get("edges") or []

        targets = []
        for edge in edges:
            node = edge.get("node") or {}
            variants = (node.get("variants") or {}).get("nodes") or []
            variant = variants[0] if variants else {}
            item = variant.get("inventoryItem") or {}
            targets.append(SyncTarget(
                id=node["id"],
                title=node.get("title") or "",
                handle=node.get("handle"),
                supplier_product_id=(node.get("supplierId") or {}).get("value"),
                ships_from=(node.get("shipsFrom") or {}).get("value"),
                inventory_item_id=_numeric_id(item.get("id")),
                inventory_quantity=variant.get("inventoryQuantity"),
                unit_cost=(item.get("unitCost") or {}).get("amount"),
            ))

        page_info = products.get("pageInfo") or {}
        cursor = edges[-1].get("cursor") if edges else None
        return targets, cursor or page_info.get("endCursor"), bool(page_info.get("hasNextPage"))

    def get_product_publications(self, product_id: str) -> List[PublicationStatus]:
        data = self.execute_graphql(PUBLICATIONS_QUERY, {"id": product_id})
        product = data.get("product")
        if product is None:
            raise ShopifyError(f"Product not found: {product_id}")
        edges = (product.get("resourcePublicationsV2") or {}).get("edges") or []
        return [
            PublicationStatus(
                id=e["node"]["publication"]["id"],
                name=e["node"]["publication"]["name"],
                is_published=bool(e["node"].get("isPublished")),
            )
            for e in edges
        ]

    def find_publication_id(self, name: str) -> Optional[str]:
        """First publication whose name contains `name` (case-insensitive)."""
        data = self.execute_graphql(ALL_PUBLICATIONS_QUERY)
        wanted = name.lower()
        for edge in (data.get("publications") or {}).get("edges") or []:
            node = edge.get("node") or {}
            if wanted in (node.get("name") or "").lower():
                return node.get("id")
        return None

    def fetch_rest_products_page(self, page_info: Optional[str] = None, limit: int = 250) -> Tuple[List[SyncTarget], Optional[str]]:
        """REST products.json page. Returns (targets, next page_info token)."""
        params = {"limit": limit, "fields": "id,handle,title,body_html"}
        if page_info:
            params["page_info"] = page_info
        response = self._rest_request("GET", "products.json", "fetch products", params=params)

        targets = [
            SyncTarget(id=str(p["id"]), title=p.get("title") or "", handle=p.get("handle"), body_html=p.get("body_html"))
            for p in response.json().get("products", [])
        ]
        next_link = response.links.get("next", {}).get("url")
        next_token = parse_qs(urlparse(next_link).query).get("page_info", [None])[0] if next_link else None
        return targets, next_token

    def get_location_id(self, inventory_item_id: Optional[str] = None) -> Optional[str]:
        """Primary location id. Without read_locations, falls back to an existing inventory level."""
        try:
            locations = self._rest_request("GET", "locations.json", "list locations").json().get("locations") or []
            if locations:
                return str(locations[0]["id"])
        except PermissionDeniedError:
            logger.warning("   (No read_locations scope, using inventory level fallback for location ID)")
        if not inventory_item_id:
            return None

        response = self._rest_request(
            "GET", "inventory_levels.json", "list inventory levels", params={"inventory_item_ids": inventory_item_id}
        )
        levels = response.json().get("inventory_levels") or []
        return str(levels[0]["location_id"]) if levels else None

    # ------------------------------------------------------------ mutations

    def publish_product(self, product_id: str, publication_id: str) -> str:
        """Publishes to one publication. Returns 'published' or 'already_published'."""
        data = self.execute_graphql(PUBLISH_MUTATION, {"id": product_id, "input": [{"publicationId": publication_id}]})
        user_errors = (data.get("publishablePublish") or {}).get("userErrors") or []
        if not user_errors:
            return "published"

        messages = [err.get("message", "") for err in user_errors]
        # Text match until the API exposes a code for this case
        if any("already" in m.lower() for m in messages):
            return "already_published"
        if any(_is_access_error(m) for m in messages):
            raise PermissionDeniedError(f"Publish denied: {', '.join(messages)}")
        raise ShopifyError(f"Publish error: {', '.join(messages)}")

    def set_metafield(self, product_id: str, key: str, value: str, namespace: str = SUPPLIER_NAMESPACE,
                      field_type: str = "single_line_text_field"):
        data = self.execute_graphql(METAFIELDS_SET_MUTATION, {"metafields": [{
            "ownerId": product_id, "namespace": namespace, "key": key, "value": value, "type": field_type,
        }]})
        user_errors = (data.get("metafieldsSet") or {}).get("userErrors") or []
        if user_errors:
            raise ShopifyError(f"metafieldsSet error: {user_errors}")

    def update_product(self, product_id: str, fields: Dict):
        """REST update of exactly the given fields."""
        payload = {"product": {"id": int(product_id), **fields}}
        self._rest_request("PUT", f"products/{product_id}.json", f"update product {product_id}", json=payload)

    def set_inventory_level(self, inventory_item_id: str, location_id: str, available: int):
        payload = {"location_id": int(location_id), "inventory_item_id": int(inventory_item_id), "available": available}
        self._rest_request("POST", "inventory_levels/set.json", f"set inventory of item {inventory_item_id}", json=payload)

    def update_inventory_cost(self, inventory_item_id: str, cost: float):
        payload = {"inventory_item": {"id": int(inventory_item_id), "cost": f"{cost:.2f}"}}
        self._rest_request(
            "PUT", f"inventory_items/{inventory_item_id}.json", f"update cost of item {inventory_item_id}", json=payload
        )

    def _rest_request(self, method: str, path: str, action: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, f"{self.rest_url}/{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"Cannot {action}: {e}") from e
        self._raise_for_rest_status(response, action)
        return response

    @staticmethod
    def _raise_for_rest_status(response: requests.Response, action: str):
        if response.status_code in (401, 403):
            raise PermissionDeniedError(f"Cannot {action}: HTTP {response.status_code} {response.text[:200]}")
        if response.status_code >= 500:
            raise TransportError(f"Cannot {action}: HTTP {response.status_code}")
        if not response.ok:
            raise ShopifyError(f"Cannot {action}: HTTP {response.status_code} {response.text[:200]}")
# ============================================================================
# End of shopify_client.py - Version: 1.0.0
# ============================================================================
