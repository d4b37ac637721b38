"""
BunkerNote Reference Implementation

Version: 1.0.0

Bunker delivery notes authorized through delegated Gateways.

Every party (ship, supplier, registry administrator) acts through a Gateway:
a programmable account whose authority follows its *current* controller.
The registry records Gateway identities, never controllers, so a controller
can be rotated without re-registering anything, and every signature check
resolves the controller live.

Lifecycle of a delivery note:
    None -> Nominated -> Finalized -> QuantumSealed

Usage:
    from bunkernote import (
        deploy_system,
        generate_controller_key,
        delivery_digest,
        delivery_id_from_text,
    )

    admin = generate_controller_key()
    system = deploy_system(admin_controller=admin.address)

    # One Gateway per party
    chief = generate_controller_key()
    ship_gateway = system.create_gateway(chief.address)

    # Both parties sign the canonical digest off-band
    digest = delivery_digest(delivery_id, "IMO0001", 42, 991, 500, 1250, "S-1")
    signature = chief.sign_digest(digest)

    # Later: re-check a stored note against whoever controls the accounts now
    verification = system.registry.verify_stored_note(delivery_id)
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    FailureCode,
    BunkerNoteError,
    AccessDenied,
    InvalidState,
    SignatureInvalid,
    ReplayRejected,
    InsufficientFunds,
    UnknownProgram,
    UnknownSelector,
    MalformedCall,
)

# Identities, hashing, signatures
from .identity import ZERO_IDENTITY, normalize_identity, is_zero
from .hashing import (
    encode_call,
    function_selector,
    intent_digest,
    delivery_digest,
    delivery_id_from_text,
    document_hash,
)
from .signing import (
    ControllerKey,
    recover,
    recover_signed_digest,
    generate_controller_key,
    sign_digest,
)

# Ledger
from .ledger import Ledger, Program, Event, external

# Gateway
from .gateway import (
    Intent,
    ValidationOutcome,
    PrefundPolicy,
    ControlledAccount,
    DelegatedAccount,
    GatewayFactory,
    INTENT_ACCEPTED,
    encode_execute,
    encode_rotation,
)

# Registry
from .registry import (
    DeliveryRegistry,
    BunkerNote,
    NoteStatus,
    NoteVerification,
)

# Relay and deployment
from .relay import IntentRelay, IntentResult, submit_intents
from .deployment import Deployment, deploy_system


__all__ = [
    # Version
    "__version__",

    # Errors
    "FailureCode",
    "BunkerNoteError",
    "AccessDenied",
    "InvalidState",
    "SignatureInvalid",
    "ReplayRejected",
    "InsufficientFunds",
    "UnknownProgram",
    "UnknownSelector",
    "MalformedCall",

    # Identities
    "ZERO_IDENTITY",
    "normalize_identity",
    "is_zero",

    # Hashing
    "encode_call",
    "function_selector",
    "intent_digest",
    "delivery_digest",
    "delivery_id_from_text",
    "document_hash",

    # Signing
    "ControllerKey",
    "recover",
    "recover_signed_digest",
    "generate_controller_key",
    "sign_digest",

    # Ledger
    "Ledger",
    "Program",
    "Event",
    "external",

    # Gateway
    "Intent",
    "ValidationOutcome",
    "PrefundPolicy",
    "ControlledAccount",
    "DelegatedAccount",
    "GatewayFactory",
    "INTENT_ACCEPTED",
    "encode_execute",
    "encode_rotation",

    # Registry
    "DeliveryRegistry",
    "BunkerNote",
    "NoteStatus",
    "NoteVerification",

    # Relay
    "IntentRelay",
    "IntentResult",
    "submit_intents",
    "Deployment",
    "deploy_system",
]
