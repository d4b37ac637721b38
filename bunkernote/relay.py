"""
BunkerNote Reference Relay

Minimal intent relay satisfying the Gateway's call contract: validate every
intent, then forward each one, all inside a single ledger transaction.

Phases of handleIntents:
1. Validation loop. Any rejected intent aborts the whole batch.
2. Execution loop. Each forwarded call runs in its own savepoint. A failing
   call is recorded as IntentExecuted(success=False) while its replay value
   stays consumed. An intent whose prefund came up short is not forwarded.
3. Collected prefunds are paid to the beneficiary.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from . import config
from .errors import BunkerNoteError
from .gateway import INTENT_ABI, VALIDATE_INTENT, Intent, ValidationOutcome
from .hashing import encode_call
from .identity import normalize_identity
from .ledger import Program, external
from .logging_config import audit_log

HANDLE_INTENTS = f"handleIntents({INTENT_ABI}[],address)"
PREFUND_DEFICIENT = "PREFUND_DEFICIENT"


@dataclass(frozen=True)
class IntentResult:
    """Outcome of one forwarded intent."""
    gateway: str
    replay_value: int
    success: bool
    prefund_paid: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gateway": self.gateway,
            "replay_value": self.replay_value,
            "success": self.success,
            "prefund_paid": self.prefund_paid,
            "reason": self.reason,
        }


class IntentRelay(Program):
    """The bound protocol every Gateway created by the factory trusts."""

    _state_fields = ("handled",)

    def __init__(self, ledger, address: str, required_prefund: Optional[int] = None):
        super().__init__(ledger, address)
        self.required_prefund = config.RELAY_PREFUND if required_prefund is None else int(required_prefund)
        self.handled = 0

    @external(HANDLE_INTENTS)
    def handle_intents(self, intents: Sequence[Any], beneficiary: str) -> List[IntentResult]:
        beneficiary = normalize_identity(beneficiary)
        batch = [i if isinstance(i, Intent) else Intent.from_abi(i) for i in intents]

        outcomes: List[ValidationOutcome] = []
        for intent in batch:
            outcomes.append(self.ledger.call(
                self.address,
                intent.sender,
                encode_call(VALIDATE_INTENT, intent.to_abi(), self.required_prefund),
            ))

        results = []
        for intent, outcome in zip(batch, outcomes):
            results.append(self._forward(intent, outcome))

        collected = sum(o.prefund_paid for o in outcomes)
        if collected:
            self.ledger.move_value(self.address, beneficiary, collected)
        self.handled += len(batch)
        return results

    def _forward(self, intent: Intent, outcome: ValidationOutcome) -> IntentResult:
        reason = None
        if outcome.partial:
            reason = PREFUND_DEFICIENT
        else:
            try:
                self.ledger.call(self.address, intent.sender, intent.forwarded_call)
            except BunkerNoteError as e:
                reason = e.code.value

        if reason:
            audit_log.forwarded_call_failed(intent.sender, intent.replay_value, reason)
        self.emit(
            "IntentExecuted",
            gateway=intent.sender,
            replayValue=intent.replay_value,
            success=reason is None,
            reason=reason or "",
        )
        return IntentResult(
            gateway=intent.sender,
            replay_value=intent.replay_value,
            success=reason is None,
            prefund_paid=outcome.prefund_paid,
            reason=reason,
        )


def submit_intents(ledger, submitter: str, relay: str, intents: Sequence[Intent], beneficiary: Optional[str] = None) -> List[IntentResult]:
    """Submit a batch of intents to a relay from a raw submitter identity."""
    return ledger.transact(
        submitter,
        relay,
        HANDLE_INTENTS,
        [intent.to_abi() for intent in intents],
        normalize_identity(beneficiary or submitter),
    )
