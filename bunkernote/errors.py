"""
BunkerNote Error Taxonomy

Every guard in the system either holds or raises one of these. The ledger
rolls back the enclosing transaction on any raise, so an error always means
"nothing happened".
"""

from enum import Enum
from typing import Any, Dict


class FailureCode(str, Enum):
    """Stable failure codes exposed to relays, the service and logs."""
    ACCESS_DENIED = "ACCESS_DENIED"
    INVALID_STATE = "INVALID_STATE"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    REPLAY_REJECTED = "REPLAY_REJECTED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    UNKNOWN_PROGRAM = "UNKNOWN_PROGRAM"
    UNKNOWN_SELECTOR = "UNKNOWN_SELECTOR"
    MALFORMED_CALL = "MALFORMED_CALL"


class BunkerNoteError(Exception):
    """Base class for every aborted operation."""

    code: FailureCode = FailureCode.INVALID_STATE

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(f"{self.code.value}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        d = {"code": self.code.value, "message": self.message}
        if self.details:
            d["details"] = {k: _plain(v) for k, v in self.details.items()}
        return d


class AccessDenied(BunkerNoteError):
    """Wrong caller for an admin-only or controller-only operation."""
    code = FailureCode.ACCESS_DENIED


class InvalidState(BunkerNoteError):
    """Transition attempted from a status that does not permit it."""
    code = FailureCode.INVALID_STATE


class SignatureInvalid(BunkerNoteError):
    """Recovered identity does not match the required controller.

    Malformed and wrong signatures are deliberately indistinguishable.
    """
    code = FailureCode.SIGNATURE_INVALID


class ReplayRejected(BunkerNoteError):
    """Intent replay value does not equal the Gateway's current counter."""
    code = FailureCode.REPLAY_REJECTED


class InsufficientFunds(BunkerNoteError):
    code = FailureCode.INSUFFICIENT_FUNDS


class UnknownProgram(BunkerNoteError):
    code = FailureCode.UNKNOWN_PROGRAM


class UnknownSelector(BunkerNoteError):
    code = FailureCode.UNKNOWN_SELECTOR


class MalformedCall(BunkerNoteError):
    """Call data or call arguments that cannot be ABI encoded/decoded."""
    code = FailureCode.MALFORMED_CALL


def _plain(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value
