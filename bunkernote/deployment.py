"""
System bootstrap: one relay, one Gateway factory bound to it, one registry.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .gateway import CREATE_ACCOUNT, DelegatedAccount, GatewayFactory
from .identity import normalize_identity
from .ledger import Ledger
from .registry import DeliveryRegistry
from .relay import IntentRelay


@dataclass
class Deployment:
    """Handles to the deployed system."""
    ledger: Ledger
    relay: IntentRelay
    factory: GatewayFactory
    registry: DeliveryRegistry
    admin: str

    def create_gateway(self, controller: str, salt: int = 0, sender: Optional[str] = None) -> DelegatedAccount:
        """Create (or fetch) the Gateway for a controller through the factory."""
        controller = normalize_identity(controller)
        address = self.ledger.transact(sender or controller, self.factory.address, CREATE_ACCOUNT, controller, salt)
        return self.ledger.get_program(address)

    def gateway(self, address: str) -> DelegatedAccount:
        return self.ledger.get_program(address)

    def to_dict(self) -> Dict[str, str]:
        return {
            "relay": self.relay.address,
            "factory": self.factory.address,
            "registry": self.registry.address,
            "admin": self.admin,
        }


def deploy_system(
    admin: Optional[str] = None,
    admin_controller: Optional[str] = None,
    ledger: Optional[Ledger] = None,
    required_prefund: Optional[int] = None,
    prefund_policy: Optional[str] = None,
    clock: Optional[Callable[[], int]] = None,
) -> Deployment:
    """
    Deploy relay, factory and registry.

    The registry owner is `admin` when given; otherwise a Gateway is created
    for `admin_controller` and made the owner.
    """
    if (admin is None) == (admin_controller is None):
        raise ValueError("exactly one of admin or admin_controller is required")

    ledger = ledger or Ledger(clock=clock)
    relay = ledger.deploy(IntentRelay, required_prefund=required_prefund)
    factory = ledger.deploy(GatewayFactory, relay.address, prefund_policy=prefund_policy)

    if admin_controller is not None:
        admin_controller = normalize_identity(admin_controller)
        admin = ledger.transact(admin_controller, factory.address, CREATE_ACCOUNT, admin_controller, 0)

    registry = ledger.deploy(DeliveryRegistry, admin)
    return Deployment(
        ledger=ledger,
        relay=relay,
        factory=factory,
        registry=registry,
        admin=normalize_identity(admin),
    )
