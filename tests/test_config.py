import os
from unittest import TestCase
from unittest.mock import patch

from config import SHOPIFY_VARS, Settings, load_settings


class TestSettings(TestCase):
    def test_countries_from_comma_list(self):
        settings = Settings(supplier_countries=" es, fr ,,it")
        self.assertEqual(settings.supplier_countries, ["ES", "FR", "IT"])

    def test_default_country_order(self):
        self.assertEqual(Settings().supplier_countries[:3], ["ES", "FR", "IT"])

    def test_quotes_stripped_from_token(self):
        settings = Settings(shopify_admin_api_token='"shpat_abc"\n', shopify_store_domain="'shop.myshopify.com'")
        self.assertEqual(settings.shopify_admin_api_token, "shpat_abc")
        self.assertEqual(settings.shopify_store_domain, "shop.myshopify.com")

    def test_require_lists_missing(self):
        settings = Settings(shopify_store_domain="shop.myshopify.com")
        with self.assertRaisesRegex(ValueError, "SHOPIFY_ADMIN_API_TOKEN"):
            settings.require(*SHOPIFY_VARS)

    def test_require_passes(self):
        Settings(shopify_store_domain="shop", shopify_admin_api_token="tok").require(*SHOPIFY_VARS)


class TestLoadSettings(TestCase):
    def test_reads_environment(self):
        env = {"SHOPIFY_STORE_DOMAIN": "shop.myshopify.com", "MUTATION_DELAY": "0.5", "PROBE_DELAY": ""}
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings(None)
        self.assertEqual(settings.shopify_store_domain, "shop.myshopify.com")
        self.assertEqual(settings.mutation_delay, 0.5)
        self.assertEqual(settings.probe_delay, 1.5)
