# ============================================================================
#  main.py - Supplier Sync Entry Point
#  Version: 1.0.0
# ============================================================================
import argparse
import logging
import sys
from typing import List, Optional

from availability import AvailabilityResolver
from config import SHOPIFY_VARS, SUPPLIER_VARS, Settings, load_settings
from errors import SyncError
from oauth import CredentialContext, CredentialStore
from run_controller import Pacer, RunController
from shopify_client import ShopifyClient
from supplier_client import SupplierClient
from sync_engine import SyncEngine

logger = logging.getLogger(__name__)

CATALOG_COMMANDS = {"publish", "audit", "fix-descriptions", "sync-availability", "sync-inventory"}
SUPPLIER_COMMANDS = {"probe", "sync-availability", "sync-inventory", "auth-status", "auth-url", "auth-exchange"}


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or greater, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="supplier-sync", description="Supplier to Shopify catalog sync")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--env-file", default=".env.local", help="dotenv file to load")

    run_opts = argparse.ArgumentParser(add_help=False)
    run_opts.add_argument("--dry-run", action="store_true", help="Simulate only, no mutations")
    run_opts.add_argument("--limit", type=non_negative_int, default=None, help="Max products to process")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("publish", parents=[run_opts], help="Publish active products to the storefront")
    sub.add_parser("audit", parents=[run_opts], help="Report publication status (read-only)")
    sub.add_parser("fix-descriptions", parents=[run_opts], help="Repair duplicated 'Ships from' text")
    sub.add_parser("sync-availability", parents=[run_opts], help="Resolve and store ships-from country")
    sub.add_parser("sync-inventory", parents=[run_opts], help="Mirror supplier stock and unit cost")
    probe = sub.add_parser("probe", parents=[run_opts], help="Probe one supplier product across countries")
    probe.add_argument("product_id", help="Supplier product id")
    sub.add_parser("auth-status", help="Show supplier token status")
    auth_url = sub.add_parser("auth-url", help="Print the supplier authorization URL")
    auth_url.add_argument("--state", default=None)
    exchange = sub.add_parser("auth-exchange", help="Exchange an authorization code for tokens")
    exchange.add_argument("code")
    return parser


def build_credentials(settings: Settings) -> CredentialContext:
    return CredentialContext(
        store=CredentialStore(settings.aliexpress_tokens_file),
        app_key=settings.aliexpress_app_key,
        app_secret=settings.aliexpress_app_secret,
        rest_url=settings.aliexpress_rest_url,
        callback_url=settings.aliexpress_callback_url,
    )


def build_supplier_client(settings: Settings, credentials: CredentialContext) -> SupplierClient:
    return SupplierClient(
        app_key=settings.aliexpress_app_key,
        app_secret=settings.aliexpress_app_secret,
        api_url=settings.aliexpress_api_url,
        credentials=credentials,
    )


def build_resolver(settings: Settings, credentials: CredentialContext) -> AvailabilityResolver:
    return AvailabilityResolver(
        build_supplier_client(settings, credentials),
        countries=settings.supplier_countries,
        pause=Pacer(settings.probe_delay),
        currency=settings.target_currency,
        language=settings.target_language,
    )


def run_auth_command(args, settings: Settings, credentials: CredentialContext) -> int:
    if args.command == "auth-url":
        print(credentials.authorization_url(args.state))
        return 0
    if args.command == "auth-exchange":
        credential = credentials.exchange_code(args.code)
        logger.info(f"✅ Authorized (user {credential.user_id})")
        return 0

    connected, message = build_supplier_client(settings, credentials).test_connection()
    logger.info(f"{'✅' if connected else '❌'} {message}")
    status = credentials.status()
    logger.info(f"Authorized: {status.authorized}")
    logger.info(f"Access token valid: {status.access_token_valid} (expires in {status.expires_in or '-'})")
    logger.info(f"Refresh token valid: {status.refresh_token_valid}")
    return 0 if status.authorized and connected else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    settings = load_settings(args.env_file)
    required = []
    if args.command in CATALOG_COMMANDS:
        required.extend(SHOPIFY_VARS)
    if args.command in SUPPLIER_COMMANDS:
        required.extend(SUPPLIER_VARS)
    settings.require(*required)
    settings.log_summary()

    credentials = build_credentials(settings) if args.command in SUPPLIER_COMMANDS else None

    try:
        if args.command.startswith("auth-"):
            return run_auth_command(args, settings, credentials)

        resolver = build_resolver(settings, credentials) if credentials else None
        controller = RunController(
            args.command,
            dry_run=getattr(args, "dry_run", False),
            mutation_delay=settings.mutation_delay,
            credentials=credentials,
        )

        if args.command == "probe":
            engine = SyncEngine(shopify=None, config={}, resolver=resolver)
            run = engine.probe_product(controller, args.product_id)
            return 1 if run.aborted else 0

        shop_client = ShopifyClient(
            domain=settings.shopify_store_domain,
            token=settings.shopify_admin_api_token,
            version=settings.shopify_api_version,
        )
        config = {
            "PUBLICATION_NAME": settings.shopify_publication_name,
            "PUBLICATION_ID": settings.shopify_publication_id,
            "LOCATION_ID": settings.shopify_location_id,
        }
        engine = SyncEngine(shop_client, config, resolver=resolver)

        if args.command == "publish":
            run = engine.publish_sweep(controller, args.limit)
        elif args.command == "audit":
            engine.audit_publications(controller, args.limit)
            run = controller.run
        elif args.command == "fix-descriptions":
            run = engine.repair_descriptions(controller, args.limit)
        elif args.command == "sync-inventory":
            run = engine.sync_inventory(controller, args.limit)
        else:
            run = engine.sync_availability(controller, args.limit)
        return 1 if run.aborted else 0
    except SyncError as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
# ============================================================================
# End of main.py - Version: 1.0.0
# ============================================================================
