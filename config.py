# ============================================================================
#  config.py - Environment Configuration
#  Version: 1.0.0
# ============================================================================
import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

from availability import DEFAULT_COUNTRIES

logger = logging.getLogger(__name__)

SHOPIFY_VARS = ("SHOPIFY_STORE_DOMAIN", "SHOPIFY_ADMIN_API_TOKEN")
SUPPLIER_VARS = ("ALIEXPRESS_APP_KEY", "ALIEXPRESS_APP_SECRET")


class Settings(BaseModel):
    shopify_store_domain: Optional[str] = None
    shopify_admin_api_token: Optional[str] = None
    shopify_api_version: str = "2024-10"
    shopify_publication_name: str = "Online Store"
    shopify_publication_id: Optional[str] = None
    shopify_location_id: Optional[str] = None
    aliexpress_app_key: Optional[str] = None
    aliexpress_app_secret: Optional[str] = None
    aliexpress_api_url: str = "https://api-sg.aliexpress.com/sync"
    aliexpress_rest_url: str = "https://api-sg.aliexpress.com/rest"
    aliexpress_callback_url: Optional[str] = None
    aliexpress_tokens_file: str = ".tokens.json"
    mutation_delay: float = 0.3
    probe_delay: float = 1.5
    target_currency: str = "EUR"
    target_language: str = "EN"
    supplier_countries: List[str] = list(DEFAULT_COUNTRIES)

    @field_validator("supplier_countries", mode="before")
    @classmethod
    def _split_countries(cls, value):
        if isinstance(value, str):
            return [c.strip().upper() for c in value.split(",") if c.strip()]
        return value

    @field_validator("shopify_admin_api_token", "shopify_store_domain", mode="before")
    @classmethod
    def _strip_quotes(cls, value):
        # Trim whitespace and quotes (common .env file issue)
        if isinstance(value, str):
            return value.strip().strip("\"'").strip() or None
        return value

    def require(self, *names: str):
        missing = [name for name in names if not getattr(self, name.lower())]
        if missing:
            logger.error(f"Missing required environment variables: {', '.join(missing)}")
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    def log_summary(self):
        def hidden(value: Optional[str]) -> str:
            return f"{'*' * min(len(value or ''), 20)}... (hidden)"

        logger.info("=" * 80)
        logger.info("Configuration Summary:")
        logger.info(f"  SHOPIFY_STORE_DOMAIN: {self.shopify_store_domain}")
        logger.info(f"  SHOPIFY_API_VERSION: {self.shopify_api_version}")
        logger.info(f"  SHOPIFY_ADMIN_API_TOKEN: {hidden(self.shopify_admin_api_token)}")
        logger.info(f"  ALIEXPRESS_APP_KEY: {self.aliexpress_app_key}")
        logger.info(f"  ALIEXPRESS_APP_SECRET: {hidden(self.aliexpress_app_secret)}")
        logger.info(f"  MUTATION_DELAY: {self.mutation_delay}s, PROBE_DELAY: {self.probe_delay}s")
        logger.info(f"  SUPPLIER_COUNTRIES: {','.join(self.supplier_countries)}")
        logger.info("=" * 80)


def load_settings(env_file: Optional[str] = ".env.local") -> Settings:
    """Reads the env file (it wins over exported values) and builds Settings."""
    if env_file:
        load_dotenv(env_file, override=True)
    values = {}
    for name in Settings.model_fields:
        raw = os.getenv(name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return Settings(**values)
# ============================================================================
# End of config.py - Version: 1.0.0
# ============================================================================
