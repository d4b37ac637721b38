"""
BunkerNote Hashing and Call Encoding

All digests are keccak-256 over standard (non-packed) ABI encodings, so that
off-system signers and on-ledger verifiers derive identical bytes.

Call data is a 4-byte function selector followed by the ABI-encoded
arguments, e.g.:

    encode_call("nominateBunker(bytes32,string,uint256,uint256)",
                delivery_id, "IMO0001", 42, 500)
"""

from typing import Any, List, Tuple

from eth_abi import encode
from eth_abi.exceptions import EncodingError
from eth_utils import keccak

from .errors import MalformedCall

SIGNED_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak(signature)."""
    return keccak(text=signature)[:4]


def parse_signature(signature: str) -> Tuple[str, List[str]]:
    """
    Split "name(type1,(type2,type3)[],type4)" into its name and top-level
    argument types.
    """
    open_at = signature.find("(")
    if open_at <= 0 or not signature.endswith(")"):
        raise ValueError(f"malformed function signature: {signature}")

    name = signature[:open_at]
    body = signature[open_at + 1:-1]
    types: List[str] = []
    depth = 0
    current = ""
    for ch in body:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            types.append(current)
            current = ""
        else:
            current += ch
    if current:
        types.append(current)
    if depth != 0:
        raise ValueError(f"unbalanced parentheses in signature: {signature}")
    return name, types


def encode_call(signature: str, *args: Any) -> bytes:
    """Build call data for a program method."""
    _, types = parse_signature(signature)
    if len(types) != len(args):
        raise MalformedCall(
            f"{signature} takes {len(types)} arguments, got {len(args)}",
            signature=signature,
        )
    try:
        payload = encode(types, list(args)) if types else b""
    except (EncodingError, TypeError, ValueError) as e:
        raise MalformedCall(f"cannot encode {signature}: {e}", signature=signature) from e
    return function_selector(signature) + payload


def intent_digest(forwarded_call: bytes, replay_value: int, gateway: str) -> bytes:
    """
    Digest a controller signs to authorize an intent.

    Binds the forwarded call, the replay value and the Gateway identity, so an
    intent signed for one Gateway can never be replayed against another.
    """
    return keccak(encode(["bytes", "uint256", "address"], [forwarded_call, replay_value, gateway]))


def delivery_digest(
    delivery_id: bytes,
    imo: str,
    supplier_id: int,
    final_density: int,
    expected_sulphur: int,
    final_quantity: int,
    sample_id: str,
) -> bytes:
    """
    Canonical digest of a bunker delivery that both the supplier and the
    chief engineer sign off-band before finalization.
    """
    return keccak(encode(
        ["bytes32", "string", "uint256", "uint256", "uint256", "uint256", "string"],
        [delivery_id, imo, supplier_id, final_density, expected_sulphur, final_quantity, sample_id],
    ))


def to_signed_message_digest(digest: bytes) -> bytes:
    """Apply the wallet "personal sign" prefix to a 32-byte digest."""
    return keccak(SIGNED_MESSAGE_PREFIX + digest)


def delivery_id_from_text(text: str) -> bytes:
    """Derive a bytes32 delivery id from a human-readable token."""
    return keccak(text=text)


def document_hash(data: bytes) -> bytes:
    """Hash of an external document (e.g. the rendered delivery note PDF)."""
    return keccak(data)
