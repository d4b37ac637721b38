"""
BunkerNote Gateway (Delegated Account)

A programmable account whose authorization is delegated to a signature check
against its *current* controller.

State machine:
    Uninitialized --initialize--> Active --rotateController--> Active

The Gateway's own identity is what the registry records; the controller is
what signs. Rotating the controller therefore never invalidates a
registration, while signature checks always follow the latest controller.

Call paths:
    Relay  -> validateIntent(intent, prefund) -> forwarded call on the Gateway
    Controller -> execute(target, value, call)   (direct fast path, no replay
                                                  counter involved)

Rotation is only reachable through the relay path, i.e. through an intent
signed by the current controller and consumed from the replay counter.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from eth_utils import decode_hex

from . import config
from .errors import AccessDenied, InsufficientFunds, InvalidState, ReplayRejected, SignatureInvalid
from .hashing import encode_call, intent_digest
from .identity import ZERO_IDENTITY, derive_program_identity, is_zero, normalize_identity
from .ledger import Program, external
from .logging_config import audit_log
from .signing import ControllerKey, recover_signed_digest

logger = logging.getLogger(__name__)

# Marker returned by validateIntent when the intent is accepted.
INTENT_ACCEPTED = 0

INTENT_ABI = "(address,bytes,uint256,bytes)"
VALIDATE_INTENT = f"validateIntent({INTENT_ABI},uint256)"
EXECUTE = "execute(address,uint256,bytes)"
EXECUTE_BATCH = "executeBatch(address[],uint256[],bytes[])"
ROTATE_CONTROLLER = "rotateController(address)"
INITIALIZE = "initialize(address)"
CREATE_ACCOUNT = "createAccount(address,uint256)"


class PrefundPolicy(str, Enum):
    """How a Gateway reacts when it cannot cover the required prefund."""
    PARTIAL = "partial"  # transfer what is available, report the deficiency
    STRICT = "strict"    # fail validation


@dataclass(frozen=True)
class Intent:
    """
    A signed, replay-bound description of a call a Gateway should forward.

    Constructed off-system, never persisted by the Gateway.
    """
    sender: str
    forwarded_call: bytes
    replay_value: int
    signature: bytes = b""

    def digest(self) -> bytes:
        return intent_digest(self.forwarded_call, self.replay_value, normalize_identity(self.sender))

    def signed_by(self, key: ControllerKey) -> "Intent":
        return replace(self, signature=key.sign_digest(self.digest()))

    def to_abi(self) -> tuple:
        return (normalize_identity(self.sender), self.forwarded_call, self.replay_value, self.signature)

    @classmethod
    def from_abi(cls, value: Sequence[Any]) -> "Intent":
        sender, forwarded_call, replay_value, signature = value
        return cls(
            sender=normalize_identity(sender),
            forwarded_call=bytes(forwarded_call),
            replay_value=int(replay_value),
            signature=bytes(signature),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "forwarded_call": "0x" + self.forwarded_call.hex(),
            "replay_value": self.replay_value,
            "signature": "0x" + self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Intent":
        return cls(
            sender=normalize_identity(data["sender"]),
            forwarded_call=decode_hex(data["forwarded_call"]),
            replay_value=int(data["replay_value"]),
            signature=decode_hex(data.get("signature", "0x")),
        )


@dataclass(frozen=True)
class ValidationOutcome:
    """What validateIntent hands back to the relay."""
    marker: int
    prefund_paid: int = 0
    deficiency: int = 0

    @property
    def partial(self) -> bool:
        return self.deficiency > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "marker": self.marker,
            "prefund_paid": self.prefund_paid,
            "deficiency": self.deficiency,
        }


class ControlledAccount(ABC):
    """
    Capability every Gateway-like program provides: report who controls it
    right now. Called live at verification time, never cached.
    """

    @abstractmethod
    def resolve_current_controller(self) -> str:
        pass


class DelegatedAccount(Program, ControlledAccount):
    """One Gateway per controlling party."""

    _state_fields = ("controller", "replay_counter")

    def __init__(
        self,
        ledger,
        address: str,
        bound_protocol: str,
        deployer: str = ZERO_IDENTITY,
        prefund_policy: Optional[str] = None
    ):
        super().__init__(ledger, address)
        self.bound_protocol = normalize_identity(bound_protocol)
        self.deployer = normalize_identity(deployer)
        self.prefund_policy = PrefundPolicy(prefund_policy or config.PREFUND_POLICY)
        self.controller = ZERO_IDENTITY
        self.replay_counter = 0

    @property
    def active(self) -> bool:
        return not is_zero(self.controller)

    def _require_active(self) -> None:
        if not self.active:
            raise InvalidState(f"gateway {self.address} is not initialized", gateway=self.address)

    def _require_caller(self, operation: str, *allowed: str) -> None:
        caller = self.msg_sender
        if caller not in allowed:
            audit_log.access_denied(f"{self.address}.{operation}", caller)
            raise AccessDenied(f"{caller} may not call {operation}", caller=caller, gateway=self.address)

    @external(INITIALIZE)
    def initialize(self, controller: str) -> None:
        if self.active:
            raise InvalidState(f"gateway {self.address} is already initialized", gateway=self.address)
        self._require_caller("initialize", self.deployer)
        controller = normalize_identity(controller)
        if is_zero(controller):
            raise InvalidState("controller must not be empty", gateway=self.address)
        self.controller = controller
        self.emit(
            "GatewayInitialized",
            gateway=self.address,
            controller=controller,
            boundProtocol=self.bound_protocol,
        )

    @external(VALIDATE_INTENT)
    def validate_intent(self, intent: Any, required_prefund: int) -> ValidationOutcome:
        """
        Authorize an intent for forwarding.

        Checks, in order: caller is the bound protocol, the signature recovers
        to the current controller, the replay value equals the counter. Only
        then is the counter consumed and the prefund paid.
        """
        self._require_active()
        self._require_caller("validateIntent", self.bound_protocol)
        if not isinstance(intent, Intent):
            intent = Intent.from_abi(intent)

        digest = intent_digest(intent.forwarded_call, intent.replay_value, self.address)
        signer = recover_signed_digest(digest, intent.signature)
        if signer != self.controller:
            audit_log.signature_rejected(self.address, self.controller, signer)
            audit_log.intent_rejected(self.address, SignatureInvalid.code.value, intent.replay_value)
            raise SignatureInvalid("intent not signed by the current controller", gateway=self.address)

        if intent.replay_value != self.replay_counter:
            audit_log.intent_rejected(self.address, ReplayRejected.code.value, intent.replay_value)
            raise ReplayRejected(
                f"replay value {intent.replay_value} does not match counter {self.replay_counter}",
                gateway=self.address, expected=self.replay_counter, received=intent.replay_value,
            )
        self.replay_counter += 1

        outcome = self._pay_prefund(required_prefund)
        self.ledger.after_commit(
            lambda: audit_log.intent_validated(self.address, intent.replay_value, outcome.prefund_paid)
        )
        return outcome

    def _pay_prefund(self, required_prefund: int) -> ValidationOutcome:
        if required_prefund <= 0:
            return ValidationOutcome(marker=INTENT_ACCEPTED)

        available = self.ledger.balance_of(self.address)
        paid = min(available, required_prefund)
        deficiency = required_prefund - paid
        if deficiency and self.prefund_policy is PrefundPolicy.STRICT:
            raise InsufficientFunds(
                f"gateway holds {available}, prefund requires {required_prefund}",
                gateway=self.address, available=available, required=required_prefund,
            )
        if paid:
            self.ledger.move_value(self.address, self.bound_protocol, paid)
        if deficiency:
            audit_log.prefund_shortfall(self.address, required_prefund, paid)
        return ValidationOutcome(marker=INTENT_ACCEPTED, prefund_paid=paid, deficiency=deficiency)

    @external(EXECUTE)
    def execute(self, target: str, value: int, forwarded_call: bytes) -> Any:
        """Forward a call verbatim. A failing call fails the whole execute."""
        self._require_active()
        self._require_caller("execute", self.bound_protocol, self.controller)
        return self.ledger.call(self.address, target, forwarded_call, value=value)

    @external(EXECUTE_BATCH)
    def execute_batch(self, targets: Sequence[str], values: Sequence[int], calls: Sequence[bytes]) -> List[Any]:
        self._require_active()
        self._require_caller("executeBatch", self.bound_protocol, self.controller)
        if not len(targets) == len(values) == len(calls):
            raise InvalidState("batch arrays differ in length", gateway=self.address)
        return [
            self.ledger.call(self.address, target, call, value=value)
            for target, value, call in zip(targets, values, calls)
        ]

    @external(ROTATE_CONTROLLER)
    def rotate_controller(self, new_controller: str) -> None:
        """
        Hand control to a new identity. Only reachable via the bound
        protocol, so the current controller must have signed the intent.
        """
        self._require_active()
        self._require_caller("rotateController", self.bound_protocol)
        new_controller = normalize_identity(new_controller)
        if is_zero(new_controller):
            raise InvalidState("controller must not be empty", gateway=self.address)

        previous = self.controller
        self.controller = new_controller
        self.emit(
            "ControllerRotated",
            gateway=self.address,
            previousController=previous,
            newController=new_controller,
        )
        self.ledger.after_commit(lambda: audit_log.controller_rotated(self.address, previous, new_controller))

    @external("controller()")
    def resolve_current_controller(self) -> str:
        return self.controller

    def to_dict(self) -> Dict[str, Any]:
        with self.ledger.read():
            return {
                "address": self.address,
                "controller": self.controller,
                "replay_counter": self.replay_counter,
                "bound_protocol": self.bound_protocol,
                "active": self.active,
                "balance": self.ledger.balance_of(self.address),
            }


class GatewayFactory(Program):
    """
    Deploys Gateways bound to one relay at deterministic identities.

    createAccount is idempotent: the same (controller, salt) always yields
    the same Gateway, deployed and initialized on first use.
    """

    def __init__(self, ledger, address: str, relay: str, prefund_policy: Optional[str] = None):
        super().__init__(ledger, address)
        self.relay = normalize_identity(relay)
        self.prefund_policy = prefund_policy

    def get_address(self, controller: str, salt: int) -> str:
        return derive_program_identity(
            b"bunkernote:gateway",
            decode_hex(self.address),
            decode_hex(normalize_identity(controller)),
            int(salt).to_bytes(32, "big"),
        )

    @external(CREATE_ACCOUNT)
    def create_account(self, controller: str, salt: int) -> str:
        address = self.get_address(controller, salt)
        if self.ledger.is_program(address):
            return address

        self.ledger.deploy(
            DelegatedAccount,
            self.relay,
            self.address,
            deployer=self.address,
            address=address,
            prefund_policy=self.prefund_policy,
        )
        self.ledger.call(self.address, address, encode_call(INITIALIZE, normalize_identity(controller)))
        logger.info("gateway %s created for controller %s", address, controller)
        return address


def encode_execute(target: str, value: int, forwarded_call: bytes) -> bytes:
    """Call data for Gateway.execute."""
    return encode_call(EXECUTE, normalize_identity(target), value, forwarded_call)


def encode_rotation(new_controller: str) -> bytes:
    """Call data for Gateway.rotateController."""
    return encode_call(ROTATE_CONTROLLER, normalize_identity(new_controller))
