"""
BunkerNote Signatures

secp256k1 recoverable signatures, the scheme controllers' wallets produce.

`recover` is the single verifier every component shares. It is pure and never
raises on malformed input: anything it cannot attribute to a signer comes
back as the zero identity, which compares unequal to every real controller.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from .hashing import to_signed_message_digest
from .identity import ZERO_IDENTITY

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2
SIGNATURE_LENGTH = 65
DIGEST_LENGTH = 32


def recover(digest: bytes, signature: bytes) -> str:
    """
    Recover the identity that signed a 32-byte digest.

    The signature is r || s || v with v in {27, 28} (or {0, 1}). Returns
    ZERO_IDENTITY when the digest or signature is malformed:
    - wrong length
    - r or s zero or not below the curve order
    - s in the upper half of the curve order (malleable form)
    - v outside the recovery-id range
    - no point recoverable
    """
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LENGTH:
        return ZERO_IDENTITY
    if not isinstance(signature, (bytes, bytearray)) or len(signature) != SIGNATURE_LENGTH:
        return ZERO_IDENTITY

    r = int.from_bytes(signature[0:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        return ZERO_IDENTITY
    if not 0 < r < SECP256K1_N or not 0 < s <= SECP256K1_HALF_N:
        return ZERO_IDENTITY

    try:
        sig = keys.Signature(vrs=(v, r, s))
        public_key = sig.recover_public_key_from_msg_hash(bytes(digest))
    except (BadSignature, ValidationError, ValueError):
        return ZERO_IDENTITY
    return public_key.to_checksum_address()


def recover_signed_digest(digest: bytes, signature: bytes) -> str:
    """Recover the signer of a wallet-signed ("personal sign") digest."""
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LENGTH:
        return ZERO_IDENTITY
    return recover(to_signed_message_digest(bytes(digest)), signature)


@dataclass(frozen=True)
class ControllerKey:
    """
    A raw secp256k1 key held off-system by a controller.

    Only used by tooling and tests; nothing on the ledger ever sees it.
    """
    private_key: bytes

    @property
    def address(self) -> str:
        return Account.from_key(self.private_key).address

    def sign_digest(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest the way wallets do (personal-sign prefix)."""
        signed = Account.from_key(self.private_key).sign_message(encode_defunct(primitive=digest))
        return bytes(signed.signature)

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "private_key": "0x" + self.private_key.hex()}

    @classmethod
    def from_hex(cls, value: str) -> "ControllerKey":
        value = value.strip()
        if value.startswith("0x"):
            value = value[2:]
        key = bytes.fromhex(value)
        if len(key) != 32:
            raise ValueError("controller key must be 32 bytes")
        return cls(private_key=key)


# Convenience functions

def generate_controller_key() -> ControllerKey:
    """Generate a fresh controller key."""
    return ControllerKey(private_key=bytes(Account.create().key))


def sign_digest(digest: bytes, private_key: Union[bytes, str]) -> bytes:
    """Sign a digest with a raw private key (bytes or hex)."""
    if isinstance(private_key, str):
        return ControllerKey.from_hex(private_key).sign_digest(digest)
    return ControllerKey(private_key=private_key).sign_digest(digest)
