import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from unittest import TestCase

from models import SignedRequest
from signer import format_timestamp, sign_iop_params, sign_params


class TestSignParams(TestCase):
    def test_secret_wraps_sorted_pairs(self):
        params = {"b": "v2", "a": "k1"}
        expected = hashlib.md5(b"secretak1bv2secret").hexdigest().upper()
        self.assertEqual(sign_params(params, "secret"), expected)

    def test_same_input_same_signature(self):
        params = {"app_key": "123", "method": "aliexpress.ds.product.get", "v": "2.0"}
        self.assertEqual(sign_params(params, "s"), sign_params(params, "s"))

    def test_key_order_irrelevant(self):
        p1 = {"a": "1", "b": "2", "c": "3"}
        p2 = {"c": "3", "a": "1", "b": "2"}
        self.assertEqual(sign_params(p1, "s"), sign_params(p2, "s"))

    def test_sign_field_is_ignored(self):
        params = {"a": "1", "b": "2"}
        with_bogus = {**params, "sign": "BOGUS"}
        self.assertEqual(sign_params(with_bogus, "s"), sign_params(params, "s"))

    def test_ordinal_sort_puts_uppercase_first(self):
        params = {"a": "x", "B": "y"}
        expected = hashlib.md5(b"sByaxs").hexdigest().upper()
        self.assertEqual(sign_params(params, "s"), expected)

    def test_signature_is_uppercase_hex(self):
        signature = sign_params({"a": "1"}, "s")
        self.assertEqual(len(signature), 32)
        self.assertEqual(signature, signature.upper())

    def test_different_secret_different_signature(self):
        self.assertNotEqual(sign_params({"a": "1"}, "s1"), sign_params({"a": "1"}, "s2"))


class TestIopSignature(TestCase):
    def test_hmac_over_path_and_pairs(self):
        params = {"refresh_token": "r", "app_key": "k", "sign": "old"}
        expected = hmac.new(b"secret", b"/auth/token/refreshapp_keykrefresh_tokenr", hashlib.sha256).hexdigest().upper()
        self.assertEqual(sign_iop_params(params, "secret", "/auth/token/refresh"), expected)


class TestTimestamp(TestCase):
    def test_fixed_width_format(self):
        moment = datetime(2024, 5, 1, 9, 3, 7, tzinfo=timezone.utc)
        self.assertEqual(format_timestamp(moment), "2024-05-01 09:03:07")

    def test_converts_to_utc(self):
        moment = datetime(2024, 5, 1, 11, 3, 7, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(format_timestamp(moment), "2024-05-01 09:03:07")

    def test_default_is_now(self):
        self.assertEqual(len(format_timestamp()), 19)


class TestSignedRequest(TestCase):
    def test_build_signs_full_parameter_set(self):
        req = SignedRequest.build("m.get", {"app_key": "k", "sign": "x"}, "s", timestamp="2024-05-01 09:03:07")
        self.assertEqual(req.params["method"], "m.get")
        self.assertEqual(req.params["timestamp"], "2024-05-01 09:03:07")
        self.assertNotIn("sign", req.params)
        self.assertEqual(req.sign, sign_params(req.params, "s"))

    def test_query_string_carries_sign(self):
        req = SignedRequest.build("m.get", {"app_key": "k"}, "s", timestamp="2024-05-01 09:03:07")
        self.assertIn(f"sign={req.sign}", req.query_string)
        self.assertIn("timestamp=2024-05-01+09%3A03%3A07", req.query_string)

    def test_frozen_after_signing(self):
        req = SignedRequest.build("m.get", {"app_key": "k"}, "s")
        with self.assertRaises(Exception):
            req.sign = "tampered"

    def test_params_cannot_change_after_signing(self):
        req = SignedRequest.build("m.get", {"a": "1"}, "s", timestamp="2024-05-01 09:03:07")
        with self.assertRaises(TypeError):
            req.params["a"] = "2"
        self.assertIn("a=1", req.query_string)
        self.assertEqual(req.sign, sign_params(req.params, "s"))

    def test_access_token_not_in_repr(self):
        req = SignedRequest.build("m.get", {"access_token": "secret-token"}, "s")
        self.assertNotIn("secret-token", repr(req))
