"""
BunkerNote Delivery Registry

Holds ship and supplier registrations and the lifecycle of every bunker
delivery note:

    None --nominateBunker--> Nominated --finalizeBunker--> Finalized
         --anchorQuantumSeal--> QuantumSealed

Status only moves forward. A note that was never nominated reads back as a
zero-valued default with status None.

Finalization requires two off-band signatures over the canonical delivery
digest. Each must recover to the *current* controller of the account
registered for the supplier and for the ship respectively, looked up live
through the account's controller capability. Registrations hold account
identities, never controllers, so controller rotation needs no
re-registration.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Tuple

from .errors import AccessDenied, InvalidState, SignatureInvalid
from .gateway import ControlledAccount
from .hashing import delivery_digest
from .identity import ZERO_IDENTITY, is_zero, normalize_identity
from .ledger import Program, external
from .logging_config import audit_log
from .signing import recover_signed_digest

ZERO_HASH = b"\x00" * 32

REGISTER_SHIP = "registerShip(string,address)"
REGISTER_SUPPLIER = "registerSupplier(uint256,address)"
NOMINATE_BUNKER = "nominateBunker(bytes32,string,uint256,uint256)"
FINALIZE_BUNKER = "finalizeBunker(bytes32,uint256,uint256,string,bytes,bytes)"
ANCHOR_QUANTUM_SEAL = "anchorQuantumSeal(bytes32,bytes32,bytes)"
TRANSFER_OWNERSHIP = "transferOwnership(address)"


class NoteStatus(str, Enum):
    """Lifecycle status of a delivery note."""
    NONE = "None"
    NOMINATED = "Nominated"
    FINALIZED = "Finalized"
    QUANTUM_SEALED = "QuantumSealed"


@dataclass(frozen=True)
class BunkerNote:
    """Snapshot of one delivery note. Callers must check `status` first."""
    imo: str = ""
    supplier_id: int = 0
    expected_sulphur: int = 0
    final_density: int = 0
    final_quantity: int = 0
    sample_id: str = ""
    finalized_at: int = 0
    signature_supplier: bytes = b""
    signature_chief: bytes = b""
    pdf_hash: bytes = ZERO_HASH
    quantum_signature: bytes = b""
    status: NoteStatus = NoteStatus.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imo": self.imo,
            "supplier_id": self.supplier_id,
            "expected_sulphur": self.expected_sulphur,
            "final_density": self.final_density,
            "final_quantity": self.final_quantity,
            "sample_id": self.sample_id,
            "finalized_at": self.finalized_at,
            "signature_supplier": "0x" + self.signature_supplier.hex(),
            "signature_chief": "0x" + self.signature_chief.hex(),
            "pdf_hash": "0x" + self.pdf_hash.hex(),
            "quantum_signature": "0x" + self.quantum_signature.hex(),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class NoteVerification:
    """Live re-check of a finalized note against current controllers."""
    valid: bool
    recovered_supplier: str
    recovered_chief: str
    supplier_valid: bool = False
    chief_valid: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "recovered_supplier": self.recovered_supplier,
            "recovered_chief": self.recovered_chief,
            "supplier_valid": self.supplier_valid,
            "chief_valid": self.chief_valid,
        }


def _delivery_key(delivery_id: bytes) -> bytes:
    if not isinstance(delivery_id, (bytes, bytearray)) or len(delivery_id) != 32:
        raise InvalidState("delivery id must be 32 bytes")
    return bytes(delivery_id)


class DeliveryRegistry(Program):
    """Registrations plus delivery notes, administered by a single owner."""

    _state_fields = ("owner", "ship_to_controller", "supplier_to_controller", "notes")

    def __init__(self, ledger, address: str, owner: str):
        super().__init__(ledger, address)
        owner = normalize_identity(owner)
        if is_zero(owner):
            raise InvalidState("registry owner must not be empty")
        self.owner = owner
        self.ship_to_controller: Dict[str, str] = {}
        self.supplier_to_controller: Dict[int, str] = {}
        self.notes: Dict[bytes, BunkerNote] = {}

    # ------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------

    def _only_owner(self, operation: str) -> None:
        caller = self.msg_sender
        if caller != self.owner:
            audit_log.access_denied(f"registry.{operation}", caller)
            raise AccessDenied(f"{operation} is restricted to the registry owner", caller=caller)

    def _log_transition(self, delivery_id: bytes, status: NoteStatus) -> None:
        actor = self.msg_sender
        self.ledger.after_commit(lambda: audit_log.note_transition(delivery_id, status.value, actor))

    def _require_status(self, delivery_id: bytes, note: BunkerNote, expected: NoteStatus) -> None:
        if note.status is not expected:
            raise InvalidState(
                f"note is {note.status.value}, expected {expected.value}",
                delivery_id=delivery_id, status=note.status.value,
            )

    # ------------------------------------------------------------
    # Controller indirection
    # ------------------------------------------------------------

    def current_controller(self, account: str) -> str:
        """
        Identity currently entitled to sign for a registered account.

        A program account answers through its controller capability; a raw
        identity controls itself; an unregistered account resolves to zero.
        """
        if is_zero(account):
            return ZERO_IDENTITY
        with self.ledger.read():
            if not self.ledger.is_program(account):
                return account
            program = self.ledger.get_program(account)
            if not isinstance(program, ControlledAccount):
                return ZERO_IDENTITY
            return program.resolve_current_controller()

    def _attribute(self, digest: bytes, signature: bytes, account: str) -> Tuple[str, bool]:
        recovered = recover_signed_digest(digest, signature)
        required = self.current_controller(account)
        return recovered, not is_zero(required) and recovered == required

    def _check_note_signatures(
        self, digest: bytes, note: BunkerNote, sig_supplier: bytes, sig_chief: bytes
    ) -> NoteVerification:
        supplier_account = self.supplier_to_controller.get(note.supplier_id, ZERO_IDENTITY)
        ship_account = self.ship_to_controller.get(note.imo, ZERO_IDENTITY)
        recovered_supplier, supplier_ok = self._attribute(digest, sig_supplier, supplier_account)
        recovered_chief, chief_ok = self._attribute(digest, sig_chief, ship_account)
        return NoteVerification(
            valid=supplier_ok and chief_ok,
            recovered_supplier=recovered_supplier,
            recovered_chief=recovered_chief,
            supplier_valid=supplier_ok,
            chief_valid=chief_ok,
        )

    # ------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------

    @external(REGISTER_SHIP)
    def register_ship(self, imo: str, account: str) -> None:
        self._only_owner("registerShip")
        account = normalize_identity(account)
        self.ship_to_controller[imo] = account
        self.emit("ShipRegistered", imo=imo, account=account)

    @external(REGISTER_SUPPLIER)
    def register_supplier(self, supplier_id: int, account: str) -> None:
        self._only_owner("registerSupplier")
        account = normalize_identity(account)
        self.supplier_to_controller[int(supplier_id)] = account
        self.emit("SupplierRegistered", supplierId=int(supplier_id), account=account)

    @external(TRANSFER_OWNERSHIP)
    def transfer_ownership(self, new_owner: str) -> None:
        self._only_owner("transferOwnership")
        new_owner = normalize_identity(new_owner)
        if is_zero(new_owner):
            raise InvalidState("registry owner must not be empty")
        previous = self.owner
        self.owner = new_owner
        self.emit("OwnershipTransferred", previousOwner=previous, newOwner=new_owner)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    @external(NOMINATE_BUNKER)
    def nominate_bunker(self, delivery_id: bytes, imo: str, supplier_id: int, expected_sulphur: int) -> None:
        """
        Open a delivery note. The caller must be exactly the account
        registered for the supplier (the account itself, not its controller).
        """
        delivery_id = _delivery_key(delivery_id)
        self._require_status(delivery_id, self.get_note(delivery_id), NoteStatus.NONE)

        caller = self.msg_sender
        registered = self.supplier_to_controller.get(int(supplier_id), ZERO_IDENTITY)
        if is_zero(registered) or caller != registered:
            audit_log.access_denied("registry.nominateBunker", caller)
            raise AccessDenied(
                f"{caller} is not the account registered for supplier {supplier_id}",
                caller=caller, supplier_id=int(supplier_id),
            )

        self.notes[delivery_id] = BunkerNote(
            imo=imo,
            supplier_id=int(supplier_id),
            expected_sulphur=int(expected_sulphur),
            status=NoteStatus.NOMINATED,
        )
        self.emit("Nominated", deliveryId=delivery_id, imo=imo, supplierId=int(supplier_id))
        self._log_transition(delivery_id, NoteStatus.NOMINATED)

    @external(FINALIZE_BUNKER)
    def finalize_bunker(
        self,
        delivery_id: bytes,
        final_density: int,
        final_quantity: int,
        sample_id: str,
        sig_supplier: bytes,
        sig_chief: bytes
    ) -> None:
        """Record measured figures once supplier and chief have both signed."""
        self._only_owner("finalizeBunker")
        delivery_id = _delivery_key(delivery_id)
        note = self.get_note(delivery_id)
        self._require_status(delivery_id, note, NoteStatus.NOMINATED)

        digest = delivery_digest(
            delivery_id, note.imo, note.supplier_id, final_density,
            note.expected_sulphur, final_quantity, sample_id,
        )
        check = self._check_note_signatures(digest, note, sig_supplier, sig_chief)
        if not check.valid:
            if not check.supplier_valid:
                audit_log.signature_rejected("supplier", str(note.supplier_id), check.recovered_supplier)
            if not check.chief_valid:
                audit_log.signature_rejected("chief", note.imo, check.recovered_chief)
            raise SignatureInvalid(
                "delivery signatures are not attributable to the current controllers",
                delivery_id=delivery_id,
            )

        self.notes[delivery_id] = replace(
            note,
            final_density=int(final_density),
            final_quantity=int(final_quantity),
            sample_id=sample_id,
            finalized_at=self.ledger.block_timestamp,
            signature_supplier=bytes(sig_supplier),
            signature_chief=bytes(sig_chief),
            status=NoteStatus.FINALIZED,
        )
        self.emit(
            "Finalized",
            deliveryId=delivery_id,
            imo=note.imo,
            quantity=int(final_quantity),
            sigSupplier=bytes(sig_supplier),
            sigChief=bytes(sig_chief),
        )
        self._log_transition(delivery_id, NoteStatus.FINALIZED)

    @external(ANCHOR_QUANTUM_SEAL)
    def anchor_quantum_seal(self, delivery_id: bytes, pdf_hash: bytes, quantum_signature: bytes) -> None:
        """Terminal transition: anchor the rendered document hash and its detached signature."""
        self._only_owner("anchorQuantumSeal")
        delivery_id = _delivery_key(delivery_id)
        note = self.get_note(delivery_id)
        self._require_status(delivery_id, note, NoteStatus.FINALIZED)

        self.notes[delivery_id] = replace(
            note,
            pdf_hash=bytes(pdf_hash),
            quantum_signature=bytes(quantum_signature),
            status=NoteStatus.QUANTUM_SEALED,
        )
        self.emit("SealAnchored", deliveryId=delivery_id, pdfHash=bytes(pdf_hash))
        self._log_transition(delivery_id, NoteStatus.QUANTUM_SEALED)

    # ------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------

    def get_note(self, delivery_id: bytes) -> BunkerNote:
        """Full snapshot, or the zero-valued default for an unknown id."""
        delivery_id = _delivery_key(delivery_id)
        with self.ledger.read():
            return self.notes.get(delivery_id, BunkerNote())

    def ship_account(self, imo: str) -> str:
        with self.ledger.read():
            return self.ship_to_controller.get(imo, ZERO_IDENTITY)

    def supplier_account(self, supplier_id: int) -> str:
        with self.ledger.read():
            return self.supplier_to_controller.get(int(supplier_id), ZERO_IDENTITY)

    def verify_stored_note(self, delivery_id: bytes) -> NoteVerification:
        """
        Re-derive the delivery digest from stored fields and re-check both
        stored signatures against the controllers in force *now*.
        """
        delivery_id = _delivery_key(delivery_id)
        with self.ledger.read():
            note = self.get_note(delivery_id)
            if note.status not in (NoteStatus.FINALIZED, NoteStatus.QUANTUM_SEALED):
                raise InvalidState(
                    f"note is {note.status.value}, nothing to verify",
                    delivery_id=delivery_id, status=note.status.value,
                )
            digest = delivery_digest(
                delivery_id, note.imo, note.supplier_id, note.final_density,
                note.expected_sulphur, note.final_quantity, note.sample_id,
            )
            return self._check_note_signatures(digest, note, note.signature_supplier, note.signature_chief)
