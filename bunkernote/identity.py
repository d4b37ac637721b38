"""
Identities.

An identity is a checksummed 20-byte address string. Raw identities come from
secp256k1 public keys; program identities are assigned by the ledger. The
registry compares identities by value and never asks which flavor it holds.
"""

from typing import Union

from eth_utils import is_address, keccak, to_checksum_address

ZERO_IDENTITY = "0x0000000000000000000000000000000000000000"


def normalize_identity(value: Union[str, bytes]) -> str:
    """Return the checksummed form of an address, raising ValueError if invalid."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError(f"identity must be 20 bytes, got {len(value)}")
        return to_checksum_address(bytes(value))
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"not an identity: {value!r}")
    return to_checksum_address(value)


def is_zero(identity: str) -> bool:
    return identity == ZERO_IDENTITY


def derive_program_identity(*parts: bytes) -> str:
    """Deterministic identity for a deployed program."""
    return to_checksum_address(keccak(b"".join(parts))[12:])
