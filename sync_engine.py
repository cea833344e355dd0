# ============================================================================
#  sync_engine.py - Catalog Sync Engine
#  Version: 1.0.0
# ============================================================================
import logging
import re
from itertools import islice
from typing import Dict, Iterator, List, Optional, Tuple, Union

from availability import AvailabilityResolver
from errors import FatalSyncError, ShopifyError
from models import Exhausted, Found, ProductGetResult, SyncTarget
from run_controller import ItemOutcome, RunController, SyncRun
from shopify_client import ShopifyClient

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
DUPLICATED_PHRASE = "Ships from"
MAX_STOCK = 9999


def _duplicate_pattern(phrase: str) -> "re.Pattern":
    return re.compile(rf"({re.escape(phrase)})(?:\s+{re.escape(phrase)})+", re.IGNORECASE)


def needs_repair(text: Optional[str], phrase: str = DUPLICATED_PHRASE) -> bool:
    return bool(text) and _duplicate_pattern(phrase).search(text) is not None


def repair_description(text: Optional[str], phrase: str = DUPLICATED_PHRASE) -> Optional[str]:
    """'Ships from Ships from Germany' -> 'Ships from Germany'. Any run of repeats collapses to one."""
    if not text:
        return text
    return _duplicate_pattern(phrase).sub(r"\1", text)


def supplier_stock(result: Union[Found, Exhausted], max_stock: int = MAX_STOCK) -> Tuple[int, Optional[float]]:
    """(quantity to show, unit cost) from a resolver result. Not on sale anywhere means zero stock."""
    if isinstance(result, Exhausted):
        return 0, None
    product = ProductGetResult.model_validate(result.raw_payload)
    prices = product.lowest_prices()
    cost = prices["sale_price"] or prices["price"] or None
    if not product.is_on_sale:
        return 0, cost
    return min(product.total_stock, max_stock), cost


class SyncEngine:
    def __init__(self, shopify: ShopifyClient, config: dict, resolver: Optional[AvailabilityResolver] = None):
        """Initializes engine with the catalog client and, for supplier runs, a resolver."""
        self.shopify = shopify
        self.config = config
        self.resolver = resolver
        # Every mutation computed during a run, dry-run included: (kind, product id, payload)
        self.planned_mutations: List[Tuple[str, str, Dict]] = []

    # ------------------------------------------------------------ enumerate

    def iter_products(self, limit: Optional[int] = None, query: str = "status:active") -> Iterator[SyncTarget]:
        """Cursor pagination over products; only the last cursor is threaded forward."""
        page_size = self.config.get("PAGE_SIZE", PAGE_SIZE)
        cursor = None
        seen = 0
        while limit is None or seen < limit:
            first = page_size if limit is None else min(page_size, limit - seen)
            targets, cursor, has_next = self.shopify.fetch_products_page(first, cursor, query)
            for target in targets:
                yield target
                seen += 1
                if limit is not None and seen >= limit:
                    return
            if not has_next or not targets:
                return

    def iter_rest_products(self) -> Iterator[SyncTarget]:
        page_info = None
        while True:
            targets, page_info = self.shopify.fetch_rest_products_page(page_info, self.config.get("PAGE_SIZE", PAGE_SIZE))
            yield from targets
            if not page_info:
                return

    def resolve_publication_id(self) -> str:
        publication_id = self.config.get("PUBLICATION_ID")
        if publication_id:
            return publication_id
        name = self.config.get("PUBLICATION_NAME", "Online Store")
        publication_id = self.shopify.find_publication_id(name)
        if not publication_id:
            raise FatalSyncError(
                f"Could not find '{name}' publication",
                instruction="Set SHOPIFY_PUBLICATION_ID or check SHOPIFY_PUBLICATION_NAME.",
            )
        logger.info(f"✅ Found {name} publication: {publication_id}")
        return publication_id

    def resolve_location_id(self, targets: List[SyncTarget]) -> str:
        location_id = self.config.get("LOCATION_ID")
        if location_id:
            return location_id
        sample = next((t.inventory_item_id for t in targets if t.inventory_item_id), None)
        location_id = self.shopify.get_location_id(sample)
        if not location_id:
            raise FatalSyncError(
                "Could not determine the inventory location",
                instruction="Set SHOPIFY_LOCATION_ID or grant the read_locations scope.",
            )
        logger.info(f"📍 Location ID: {location_id}")
        return location_id

    def _plan(self, kind: str, product_id: str, payload: Dict):
        self.planned_mutations.append((kind, product_id, payload))

    # ---------------------------------------------------------- operations

    def publish_sweep(self, controller: RunController, limit: Optional[int] = None) -> SyncRun:
        """Publishes every active product that is missing from the storefront publication."""
        publication_id = None

        def enumerate_targets():
            nonlocal publication_id
            publication_id = self.resolve_publication_id()
            return self.iter_products(limit)

        def process(target: SyncTarget, run: SyncRun) -> ItemOutcome:
            target.publications = self.shopify.get_product_publications(target.id)
            if target.is_published_on(publication_id):
                logger.info(f"   ✓ {target.short_title} (already published)")
                return ItemOutcome.ALREADY_SATISFIED

            payload = {"id": target.id, "input": [{"publicationId": publication_id}]}
            self._plan("publish", target.id, payload)
            if run.dry_run:
                current = ", ".join(p.name for p in target.publications if p.is_published) or "none"
                logger.info(f"   ○ {target.short_title} (would publish; current: {current})")
                return ItemOutcome.SUCCEEDED

            run.pace_mutation()
            if self.shopify.publish_product(target.id, publication_id) == "already_published":
                logger.info(f"   ✓ {target.short_title} (already)")
                return ItemOutcome.ALREADY_SATISFIED
            logger.info(f"   ✅ {target.short_title} (published)")
            return ItemOutcome.SUCCEEDED

        return controller.execute(enumerate_targets, process, label=lambda t: t.short_title)

    def audit_publications(self, controller: RunController, limit: Optional[int] = None) -> Dict[str, List[SyncTarget]]:
        """Read-only: which products are and are not on the storefront publication."""
        report: Dict[str, List[SyncTarget]] = {"published": [], "unpublished": []}
        publication_id = None

        def enumerate_targets():
            nonlocal publication_id
            publication_id = self.resolve_publication_id()
            return self.iter_products(limit)

        def process(target: SyncTarget, run: SyncRun) -> ItemOutcome:
            target.publications = self.shopify.get_product_publications(target.id)
            if target.is_published_on(publication_id):
                report["published"].append(target)
                return ItemOutcome.ALREADY_SATISFIED
            report["unpublished"].append(target)
            logger.info(f"   ○ {target.short_title} not published")
            return ItemOutcome.UNAVAILABLE

        controller.execute(enumerate_targets, process, label=lambda t: t.short_title)
        logger.info(f"Published: {len(report['published'])}, not published: {len(report['unpublished'])}")
        for target in report["unpublished"]:
            logger.info(f"   - {target.handle or target.id}")
        return report

    def repair_descriptions(self, controller: RunController, limit: Optional[int] = None) -> SyncRun:
        """Collapses the duplicated 'Ships from' phrase in product descriptions."""
        phrase = self.config.get("DUPLICATED_PHRASE", DUPLICATED_PHRASE)

        def enumerate_targets():
            broken = (t for t in self.iter_rest_products() if needs_repair(t.body_html, phrase))
            return islice(broken, limit)

        def process(target: SyncTarget, run: SyncRun) -> ItemOutcome:
            fixed = repair_description(target.body_html, phrase)
            fields = {"body_html": fixed}
            self._plan("update_body", target.id, fields)
            logger.info(f"   Before: {(target.body_html or '')[:100]}...")
            logger.info(f"   After:  {(fixed or '')[:100]}...")
            if run.dry_run:
                logger.info("   [DRY RUN] Would update")
                return ItemOutcome.SUCCEEDED

            run.pace_mutation()
            self.shopify.update_product(target.id, fields)
            logger.info("   ✅ Fixed")
            return ItemOutcome.SUCCEEDED

        return controller.execute(enumerate_targets, process, label=lambda t: t.handle or t.id)

    def sync_availability(self, controller: RunController, limit: Optional[int] = None) -> SyncRun:
        """Resolves the shipping country of every supplier-linked product and stores it."""
        if self.resolver is None:
            raise ValueError("sync_availability needs an AvailabilityResolver")

        def enumerate_targets():
            linked = (t for t in self.iter_products() if t.supplier_product_id)
            return islice(linked, limit)

        def process(target: SyncTarget, run: SyncRun) -> ItemOutcome:
            result = self.resolver.resolve(target.supplier_product_id)
            if isinstance(result, Exhausted):
                tried = ", ".join(f"{p.country}:{p.error_code or p.outcome.value}" for p in result.attempts)
                logger.info(f"   ○ {target.short_title} unavailable ({tried})")
                return ItemOutcome.UNAVAILABLE
            if target.ships_from == result.country:
                logger.info(f"   ✓ {target.short_title} ships from {result.country} (unchanged)")
                return ItemOutcome.ALREADY_SATISFIED

            payload = {"key": "ships_from", "value": result.country}
            self._plan("set_metafield", target.id, payload)
            if run.dry_run:
                logger.info(f"   ○ {target.short_title} would set ships_from={result.country}")
                return ItemOutcome.SUCCEEDED

            run.pace_mutation()
            self.shopify.set_metafield(target.id, **payload)
            logger.info(f"   ✅ {target.short_title} ships_from={result.country}")
            return ItemOutcome.SUCCEEDED

        return controller.execute(enumerate_targets, process, label=lambda t: t.short_title)

    def sync_inventory(self, controller: RunController, limit: Optional[int] = None) -> SyncRun:
        """Mirrors supplier stock and unit cost onto the first variant of every supplier-linked product."""
        if self.resolver is None:
            raise ValueError("sync_inventory needs an AvailabilityResolver")
        max_stock = self.config.get("MAX_STOCK", MAX_STOCK)
        location_id = None

        def enumerate_targets():
            nonlocal location_id
            linked = list(islice((t for t in self.iter_products() if t.supplier_product_id), limit))
            if linked:
                location_id = self.resolve_location_id(linked)
            return linked

        def process(target: SyncTarget, run: SyncRun) -> ItemOutcome:
            if not target.inventory_item_id:
                raise ShopifyError(f"No inventory item on {target.id}")
            quantity, cost = supplier_stock(self.resolver.resolve(target.supplier_product_id), max_stock)
            current = target.inventory_quantity or 0
            outcome = ItemOutcome.SUCCEEDED if quantity else ItemOutcome.UNAVAILABLE

            changes = {}
            if quantity != current:
                changes["available"] = quantity
            if cost and (target.unit_cost is None or abs(target.unit_cost - cost) >= 0.005):
                changes["cost"] = round(cost, 2)
            if not changes:
                logger.info(f"   ✓ {target.short_title} stock {current} (no change)")
                return ItemOutcome.ALREADY_SATISFIED if quantity else ItemOutcome.UNAVAILABLE

            payload = {"inventory_item_id": target.inventory_item_id, "location_id": location_id, **changes}
            self._plan("set_inventory", target.id, payload)
            if run.dry_run:
                logger.info(f"   ○ {target.short_title} would update: stock {current} → {quantity}, cost {cost}")
                return outcome

            if "available" in changes:
                run.pace_mutation()
                self.shopify.set_inventory_level(target.inventory_item_id, location_id, quantity)
            if "cost" in changes:
                run.pace_mutation()
                self.shopify.update_inventory_cost(target.inventory_item_id, changes["cost"])
            logger.info(f"   ✅ {target.short_title} stock {current} → {quantity}")
            return outcome

        return controller.execute(enumerate_targets, process, label=lambda t: t.short_title)

    def probe_product(self, controller: RunController, product_id: str) -> SyncRun:
        """Single-product diagnostic: prints every country attempt."""
        if self.resolver is None:
            raise ValueError("probe_product needs an AvailabilityResolver")

        def process(supplier_id: str, run: SyncRun) -> ItemOutcome:
            result = self.resolver.resolve(supplier_id)
            for probe in result.attempts:
                logger.info(f"   {probe.country}: {probe.outcome.value} {probe.error_code or ''} {probe.message or ''}".rstrip())
            if isinstance(result, Exhausted):
                logger.info("❌ Product not available for any tested country")
                return ItemOutcome.UNAVAILABLE
            logger.info(f"✅ Found working country: {result.country}")
            logger.info(f"   Title: {result.title}")
            logger.info(f"   Images: {result.image_count}, Variants: {result.variant_count}")
            return ItemOutcome.SUCCEEDED

        return controller.execute(lambda: [product_id], process)
# ============================================================================
# End of sync_engine.py - Version: 1.0.0
# ============================================================================
