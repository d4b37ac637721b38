"""
Signature recovery and digest tests.

The verifier never raises: every malformed input comes back as the zero
identity, which matches no controller.
"""

import unittest

from eth_utils import keccak

from bunkernote import (
    ZERO_IDENTITY,
    ControllerKey,
    delivery_digest,
    function_selector,
    generate_controller_key,
    intent_digest,
    recover,
    recover_signed_digest,
    sign_digest,
)
from bunkernote.hashing import parse_signature, to_signed_message_digest
from bunkernote.signing import SECP256K1_N


class TestRecover(unittest.TestCase):

    def setUp(self):
        self.key = generate_controller_key()
        self.digest = keccak(text="bunker delivery")
        self.signature = self.key.sign_digest(self.digest)

    def test_recovers_signer(self):
        self.assertEqual(recover_signed_digest(self.digest, self.signature), self.key.address)

    def test_raw_recover_over_prefixed_digest(self):
        prefixed = to_signed_message_digest(self.digest)
        self.assertEqual(recover(prefixed, self.signature), self.key.address)

    def test_other_digest_recovers_someone_else(self):
        other = keccak(text="another delivery")
        self.assertNotEqual(recover_signed_digest(other, self.signature), self.key.address)

    def test_wrong_length_is_zero(self):
        self.assertEqual(recover_signed_digest(self.digest, self.signature[:64]), ZERO_IDENTITY)
        self.assertEqual(recover_signed_digest(self.digest, self.signature + b"\x00"), ZERO_IDENTITY)
        self.assertEqual(recover_signed_digest(self.digest, b""), ZERO_IDENTITY)

    def test_short_digest_is_zero(self):
        self.assertEqual(recover_signed_digest(self.digest[:31], self.signature), ZERO_IDENTITY)

    def test_bad_v_is_zero(self):
        bad = self.signature[:64] + bytes([29])
        self.assertEqual(recover_signed_digest(self.digest, bad), ZERO_IDENTITY)

    def test_v_as_recovery_id_accepted(self):
        lowered = self.signature[:64] + bytes([self.signature[64] - 27])
        self.assertEqual(recover_signed_digest(self.digest, lowered), self.key.address)

    def test_high_s_is_zero(self):
        r = self.signature[:32]
        s = int.from_bytes(self.signature[32:64], "big")
        v = self.signature[64]
        flipped = r + (SECP256K1_N - s).to_bytes(32, "big") + bytes([55 - v])
        self.assertEqual(recover_signed_digest(self.digest, flipped), ZERO_IDENTITY)

    def test_zero_r_is_zero(self):
        bad = b"\x00" * 32 + self.signature[32:]
        self.assertEqual(recover_signed_digest(self.digest, bad), ZERO_IDENTITY)

    def test_r_above_order_is_zero(self):
        bad = SECP256K1_N.to_bytes(32, "big") + self.signature[32:]
        self.assertEqual(recover_signed_digest(self.digest, bad), ZERO_IDENTITY)

    def test_non_bytes_is_zero(self):
        self.assertEqual(recover(self.digest, "0x" + self.signature.hex()), ZERO_IDENTITY)


class TestControllerKey(unittest.TestCase):

    def test_hex_round_trip(self):
        key = generate_controller_key()
        restored = ControllerKey.from_hex(key.to_dict()["private_key"])
        self.assertEqual(restored.address, key.address)

    def test_rejects_short_key(self):
        with self.assertRaises(ValueError):
            ControllerKey.from_hex("0x1234")

    def test_sign_digest_accepts_hex_key(self):
        key = generate_controller_key()
        digest = keccak(text="x")
        signature = sign_digest(digest, "0x" + key.private_key.hex())
        self.assertEqual(recover_signed_digest(digest, signature), key.address)


class TestDigests(unittest.TestCase):

    def test_known_selector(self):
        self.assertEqual(function_selector("transfer(address,uint256)").hex(), "a9059cbb")

    def test_parse_nested_signature(self):
        name, types = parse_signature("handleIntents((address,bytes,uint256,bytes)[],address)")
        self.assertEqual(name, "handleIntents")
        self.assertEqual(types, ["(address,bytes,uint256,bytes)[]", "address"])

    def test_parse_rejects_unbalanced(self):
        with self.assertRaises(ValueError):
            parse_signature("broken((address,bytes)")

    def test_intent_digest_binds_gateway(self):
        a = generate_controller_key().address
        b = generate_controller_key().address
        self.assertNotEqual(intent_digest(b"\x01", 0, a), intent_digest(b"\x01", 0, b))

    def test_intent_digest_binds_replay_value(self):
        gateway = generate_controller_key().address
        self.assertNotEqual(intent_digest(b"\x01", 0, gateway), intent_digest(b"\x01", 1, gateway))

    def test_delivery_digest_strings_do_not_collide(self):
        d = b"\x11" * 32
        first = delivery_digest(d, "IMO1", 42, 991, 500, 1250, "23")
        second = delivery_digest(d, "IMO12", 42, 991, 500, 1250, "3")
        self.assertNotEqual(first, second)

    def test_delivery_digest_is_deterministic(self):
        d = b"\x11" * 32
        self.assertEqual(
            delivery_digest(d, "IMO0001", 42, 991, 500, 1250, "S"),
            delivery_digest(d, "IMO0001", 42, 991, 500, 1250, "S"),
        )


if __name__ == "__main__":
    unittest.main()
