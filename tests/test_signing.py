from __future__ import annotations

import unittest
from decimal import Decimal

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data

from execution.credentials import Credentials
from execution.errors import ConfigurationError, SignatureError
from signing import (
    HmacSigner,
    L1ActionSigner,
    WalletMessageSigner,
    action_hash,
    canonical_payload,
    encode_query,
    float_to_wire,
    normalize_action,
    param_to_str,
)
from signing.l1 import agent_payload
from utils.numbers import format_fixed, strip_trailing_zeros

from tests.fakes import FIXED_NOW_MS, TEST_ADDRESS, TEST_PRIVATE_KEY, USER_ADDRESS, VAULT_ADDRESS


class ParamEncodingTestCase(unittest.TestCase):
    def test_values_render_like_exchange_apis(self) -> None:
        self.assertEqual(param_to_str(True), "true")
        self.assertEqual(param_to_str(False), "false")
        self.assertEqual(param_to_str(5.0), "5")
        self.assertEqual(param_to_str(0.1), "0.1")
        self.assertEqual(param_to_str(Decimal("0.020")), "0.020")
        self.assertEqual(param_to_str(50000), "50000")

    def test_query_keeps_insertion_order(self) -> None:
        query = encode_query({"symbol": "BTCUSDT", "side": "BUY", "reduceOnly": True})
        self.assertEqual(query, "symbol=BTCUSDT&side=BUY&reduceOnly=true")

    def test_decimal_helpers(self) -> None:
        self.assertEqual(format_fixed("0.0195", 3), "0.020")
        self.assertEqual(format_fixed(2.5, 0), "3")
        self.assertEqual(strip_trailing_zeros("0.020"), "0.02")
        self.assertEqual(strip_trailing_zeros("12345.0"), "12345")
        self.assertEqual(strip_trailing_zeros("-0"), "0")


class HmacSignerTestCase(unittest.TestCase):
    def test_matches_published_binance_example(self) -> None:
        signer = HmacSigner(
            "api-key", "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
        )
        query = (
            "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1&price=0.1"
            "&recvWindow=5000&timestamp=1499827319559"
        )
        self.assertEqual(
            signer.sign(query), "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"
        )

    def test_signature_is_appended_to_the_signed_query(self) -> None:
        signer = HmacSigner("key", "secret")
        query, signed = signer.sign_params({"symbol": "BTCUSDT", "timestamp": 1})
        self.assertEqual(query, "symbol=BTCUSDT&timestamp=1")
        self.assertEqual(signed, f"{query}&signature={signer.sign(query)}")
        self.assertEqual(signer.sign(query), signer.sign({"symbol": "BTCUSDT", "timestamp": 1}))
        self.assertEqual(len(signer.sign(query)), 64)

    def test_missing_secret_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            HmacSigner.from_credentials(Credentials(exchange="binance", api_key="key"))


class WalletMessageSignerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.signer = WalletMessageSigner(USER_ADDRESS, TEST_ADDRESS, TEST_PRIVATE_KEY)

    def _recover(self, signature) -> str:
        digest = self.signer.message_hash(signature.payload, signature.nonce)
        return Account.recover_message(encode_defunct(primitive=digest), signature=signature.signature)

    def test_payload_is_sorted_compact_and_stringified(self) -> None:
        signature = self.signer.sign({"symbol": "BTCUSDT", "side": "BUY", "reduceOnly": True}, FIXED_NOW_MS)
        self.assertEqual(
            signature.payload,
            '{"recvWindow":"50000","reduceOnly":"true","side":"BUY",'
            '"symbol":"BTCUSDT","timestamp":"1700000000000"}',
        )
        self.assertEqual(signature.nonce, 1_700_000_000_000_000)
        self.assertEqual(signature.timestamp, 1_700_000_000_000)

    def test_signature_recovers_the_signer_key(self) -> None:
        signature = self.signer.sign({"symbol": "BTCUSDT", "quantity": "0.02"}, FIXED_NOW_MS)
        self.assertTrue(signature.signature.startswith("0x"))
        self.assertEqual(self._recover(signature), TEST_ADDRESS)

    def test_key_order_does_not_change_the_signature(self) -> None:
        first = self.signer.sign({"symbol": "BTCUSDT", "side": "SELL", "type": "MARKET"}, FIXED_NOW_MS)
        second = self.signer.sign({"type": "MARKET", "side": "SELL", "symbol": "BTCUSDT"}, FIXED_NOW_MS)
        self.assertEqual(first.signature, second.signature)

    def test_auth_params_carry_numeric_timestamp(self) -> None:
        params = self.signer.sign({"symbol": "BTCUSDT"}, FIXED_NOW_MS).auth_params()
        self.assertIsInstance(params["timestamp"], int)
        self.assertIsInstance(params["recvWindow"], int)
        self.assertEqual(params["user"], USER_ADDRESS)
        self.assertEqual(params["signer"], TEST_ADDRESS)

    def test_canonical_payload_strips_whitespace(self) -> None:
        self.assertEqual(canonical_payload({"b": "x y", "a": 1}), '{"a":"1","b":"xy"}')

    def test_requires_all_wallet_fields(self) -> None:
        creds = Credentials(exchange="aster", wallet_address=USER_ADDRESS, private_key=TEST_PRIVATE_KEY)
        with self.assertRaises(ConfigurationError) as ctx:
            WalletMessageSigner.from_credentials(creds)
        self.assertIn("signer_address", str(ctx.exception))
        self.assertNotIn(TEST_PRIVATE_KEY, str(ctx.exception))


class WireNumberTestCase(unittest.TestCase):
    def test_float_to_wire_canonical_forms(self) -> None:
        self.assertEqual(float_to_wire("12345.0"), "12345")
        self.assertEqual(float_to_wire("-0"), "0")
        self.assertEqual(float_to_wire("0.1000"), "0.1")
        self.assertEqual(float_to_wire(0.02), "0.02")
        self.assertEqual(float_to_wire("0.00000001"), "0.00000001")

    def test_float_to_wire_refuses_lossy_rounding(self) -> None:
        with self.assertRaises(SignatureError):
            float_to_wire("0.123456789")
        with self.assertRaises(SignatureError):
            float_to_wire("nan")

    def test_normalize_touches_only_number_fields(self) -> None:
        action = {
            "type": "order",
            "orders": [{"a": 0, "b": True, "p": "50250.0", "s": "0.0200", "t": {"trigger": {"triggerPx": "49000.00"}}}],
            "grouping": "na",
        }
        wire = normalize_action(action)
        order = wire["orders"][0]
        self.assertEqual(order["p"], "50250")
        self.assertEqual(order["s"], "0.02")
        self.assertEqual(order["t"]["trigger"]["triggerPx"], "49000")
        self.assertIs(order["b"], True)
        self.assertEqual(order["a"], 0)
        self.assertEqual(action["orders"][0]["p"], "50250.0")


class L1ActionSignerTestCase(unittest.TestCase):
    action = {"type": "cancel", "cancels": [{"a": 0, "o": 123}]}

    def test_hash_is_deterministic(self) -> None:
        self.assertEqual(action_hash(self.action, None, 1), action_hash(dict(self.action), None, 1))
        self.assertEqual(len(action_hash(self.action, None, 1)), 32)

    def test_hash_depends_on_nonce_vault_and_expiry(self) -> None:
        base = action_hash(self.action, None, 1)
        self.assertNotEqual(base, action_hash(self.action, None, 2))
        self.assertNotEqual(base, action_hash(self.action, VAULT_ADDRESS, 1))
        self.assertNotEqual(base, action_hash(self.action, None, 1, expires_after=10))

    def test_invalid_vault_address_is_rejected(self) -> None:
        with self.assertRaises(SignatureError):
            action_hash(self.action, "0x1234", 1)

    def test_signature_recovers_agent_key(self) -> None:
        signer = L1ActionSigner(TEST_PRIVATE_KEY)
        signed = signer.sign(self.action, nonce=1_700_000_000_000)
        connection_id = action_hash(signed.action, None, signed.nonce)
        message = encode_typed_data(full_message=agent_payload(connection_id, is_mainnet=True))
        sig = signed.signature
        recovered = Account.recover_message(message, vrs=(sig["v"], sig["r"], sig["s"]))
        self.assertEqual(recovered, TEST_ADDRESS)
        self.assertEqual(signer.address, TEST_ADDRESS)

    def test_network_changes_the_signature(self) -> None:
        mainnet = L1ActionSigner(TEST_PRIVATE_KEY, is_mainnet=True).sign(self.action, nonce=5)
        testnet = L1ActionSigner(TEST_PRIVATE_KEY, is_mainnet=False).sign(self.action, nonce=5)
        self.assertNotEqual(mainnet.signature, testnet.signature)

    def test_payload_includes_optional_fields_only_when_set(self) -> None:
        signer = L1ActionSigner(TEST_PRIVATE_KEY)
        plain = signer.sign(self.action, nonce=5).to_payload()
        self.assertEqual(set(plain), {"action", "nonce", "signature"})
        full = signer.sign(self.action, VAULT_ADDRESS, nonce=5, expires_after=99).to_payload()
        self.assertEqual(full["vaultAddress"], VAULT_ADDRESS)
        self.assertEqual(full["expiresAfter"], 99)

    def test_missing_key_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            L1ActionSigner.from_credentials(Credentials(exchange="hyperliquid"))


if __name__ == "__main__":
    unittest.main()
