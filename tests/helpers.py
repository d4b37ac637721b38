"""
Shared fixtures for the BunkerNote test suite.

A Scenario deploys a fresh system with three parties:
- admin: controls the Gateway that owns the registry
- chief: controls the ship's Gateway
- barge: controls the supplier's Gateway
"""

from typing import Optional

from bunkernote import (
    Intent,
    delivery_digest,
    delivery_id_from_text,
    deploy_system,
    encode_call,
    encode_execute,
    generate_controller_key,
    submit_intents,
)
from bunkernote.gateway import EXECUTE
from bunkernote.registry import (
    FINALIZE_BUNKER,
    NOMINATE_BUNKER,
    REGISTER_SHIP,
    REGISTER_SUPPLIER,
)

FIXED_TIME = 1_700_000_000
IMO = "IMO0001"
SUPPLIER_ID = 42
SULPHUR = 500
DENSITY = 991
QUANTITY = 1250
SAMPLE_ID = "SAMPLE-0001"


class Scenario:
    """A deployed system plus the keys of every party."""

    def __init__(self, required_prefund: int = 0, prefund_policy: str = "partial"):
        self.admin_key = generate_controller_key()
        self.chief_key = generate_controller_key()
        self.barge_key = generate_controller_key()
        self.bundler = generate_controller_key().address

        self.system = deploy_system(
            admin_controller=self.admin_key.address,
            required_prefund=required_prefund,
            prefund_policy=prefund_policy,
            clock=lambda: FIXED_TIME,
        )
        self.ledger = self.system.ledger
        self.registry = self.system.registry
        self.relay = self.system.relay
        self.admin_gateway = self.system.gateway(self.system.admin)
        self.ship_gateway = self.system.create_gateway(self.chief_key.address)
        self.supplier_gateway = self.system.create_gateway(self.barge_key.address)

    # ------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------

    def intent(self, gateway, key, forwarded_call: bytes, replay_value: Optional[int] = None) -> Intent:
        if replay_value is None:
            replay_value = gateway.replay_counter
        return Intent(
            sender=gateway.address,
            forwarded_call=forwarded_call,
            replay_value=replay_value,
        ).signed_by(key)

    def submit(self, *intents: Intent, beneficiary: Optional[str] = None):
        return submit_intents(self.ledger, self.bundler, self.relay.address, list(intents), beneficiary)

    def admin_call(self, call: bytes):
        """Forward a registry call from the admin Gateway through the relay."""
        intent = self.intent(self.admin_gateway, self.admin_key, encode_execute(self.registry.address, 0, call))
        return self.submit(intent)[0]

    # ------------------------------------------------------------
    # Delivery lifecycle
    # ------------------------------------------------------------

    def register(self, imo: str = IMO, supplier_id: int = SUPPLIER_ID) -> None:
        assert self.admin_call(encode_call(REGISTER_SHIP, imo, self.ship_gateway.address)).success
        assert self.admin_call(encode_call(REGISTER_SUPPLIER, supplier_id, self.supplier_gateway.address)).success

    def nominate(self, delivery_id: bytes, imo: str = IMO, supplier_id: int = SUPPLIER_ID,
                 sulphur: int = SULPHUR, controller=None):
        """Nominate through the supplier Gateway's controller fast path."""
        controller = controller or self.barge_key
        return self.ledger.transact(
            controller.address, self.supplier_gateway.address, EXECUTE,
            self.registry.address, 0,
            encode_call(NOMINATE_BUNKER, delivery_id, imo, supplier_id, sulphur),
        )

    def digest(self, delivery_id: bytes, density: int = DENSITY, quantity: int = QUANTITY,
               sample_id: str = SAMPLE_ID) -> bytes:
        return delivery_digest(delivery_id, IMO, SUPPLIER_ID, density, SULPHUR, quantity, sample_id)

    def finalize(self, delivery_id: bytes, sig_supplier: Optional[bytes] = None,
                 sig_chief: Optional[bytes] = None, supplier_key=None, chief_key=None):
        digest = self.digest(delivery_id)
        if sig_supplier is None:
            sig_supplier = (supplier_key or self.barge_key).sign_digest(digest)
        if sig_chief is None:
            sig_chief = (chief_key or self.chief_key).sign_digest(digest)
        return self.admin_call(encode_call(
            FINALIZE_BUNKER, delivery_id, DENSITY, QUANTITY, SAMPLE_ID, sig_supplier, sig_chief,
        ))


def new_delivery_id(token: str = "BDN-0001") -> bytes:
    return delivery_id_from_text(token)
