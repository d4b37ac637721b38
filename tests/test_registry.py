"""
Delivery registry tests.

Critical invariants tested:
    REGISTRATIONS HOLD ACCOUNT IDENTITIES, SIGNATURES FOLLOW THE CURRENT CONTROLLER
    NOTE STATUS ONLY MOVES FORWARD
"""

import threading
import time
import unittest

from helpers import (
    DENSITY,
    FIXED_TIME,
    IMO,
    QUANTITY,
    SAMPLE_ID,
    SULPHUR,
    SUPPLIER_ID,
    Scenario,
    new_delivery_id,
)

from bunkernote import (
    ZERO_IDENTITY,
    AccessDenied,
    InvalidState,
    NoteStatus,
    SignatureInvalid,
    delivery_digest,
    document_hash,
    encode_call,
    encode_rotation,
    generate_controller_key,
)
from bunkernote.gateway import EXECUTE
from bunkernote.registry import (
    ANCHOR_QUANTUM_SEAL,
    FINALIZE_BUNKER,
    NOMINATE_BUNKER,
    REGISTER_SHIP,
    REGISTER_SUPPLIER,
    TRANSFER_OWNERSHIP,
)


def admin_direct(s, call):
    """Registry call through the admin Gateway's controller fast path; errors propagate."""
    return s.ledger.transact(s.admin_key.address, s.admin_gateway.address, EXECUTE, s.registry.address, 0, call)


def rotate(s, gateway, key, new_key):
    result = s.submit(s.intent(gateway, key, encode_rotation(new_key.address)))[0]
    assert result.success


class TestRegistration(unittest.TestCase):

    def setUp(self):
        self.s = Scenario()

    def test_owner_is_admin_gateway(self):
        self.assertEqual(self.s.registry.owner, self.s.admin_gateway.address)

    def test_register_records_accounts(self):
        self.s.register()
        self.assertEqual(self.s.registry.ship_account(IMO), self.s.ship_gateway.address)
        self.assertEqual(self.s.registry.supplier_account(SUPPLIER_ID), self.s.supplier_gateway.address)
        self.assertEqual(len(self.s.ledger.events(name="ShipRegistered")), 1)
        self.assertEqual(len(self.s.ledger.events(name="SupplierRegistered")), 1)

    def test_admin_controller_is_not_the_owner(self):
        with self.assertRaises(AccessDenied):
            self.s.ledger.transact(
                self.s.admin_key.address, self.s.registry.address, REGISTER_SHIP, IMO, self.s.ship_gateway.address,
            )

    def test_unregistered_lookups_are_zero(self):
        self.assertEqual(self.s.registry.ship_account("IMO9999"), ZERO_IDENTITY)
        self.assertEqual(self.s.registry.supplier_account(7), ZERO_IDENTITY)
        self.assertEqual(self.s.registry.current_controller(ZERO_IDENTITY), ZERO_IDENTITY)

    def test_registration_can_be_overwritten(self):
        self.s.register()
        other = self.s.system.create_gateway(generate_controller_key().address)
        admin_direct(self.s, encode_call(REGISTER_SHIP, IMO, other.address))
        self.assertEqual(self.s.registry.ship_account(IMO), other.address)

    def test_transfer_ownership(self):
        new_owner = generate_controller_key()
        admin_direct(self.s, encode_call(TRANSFER_OWNERSHIP, new_owner.address))
        self.assertEqual(self.s.registry.owner, new_owner.address)
        with self.assertRaises(AccessDenied):
            admin_direct(self.s, encode_call(REGISTER_SUPPLIER, 1, new_owner.address))
        self.s.ledger.transact(new_owner.address, self.s.registry.address, REGISTER_SUPPLIER, 1, new_owner.address)
        self.assertEqual(self.s.registry.supplier_account(1), new_owner.address)

    def test_transfer_ownership_to_zero_rejected(self):
        with self.assertRaises(InvalidState):
            admin_direct(self.s, encode_call(TRANSFER_OWNERSHIP, ZERO_IDENTITY))


class TestControllerResolution(unittest.TestCase):

    def setUp(self):
        self.s = Scenario()

    def test_gateway_resolves_live(self):
        self.assertEqual(self.s.registry.current_controller(self.s.ship_gateway.address), self.s.chief_key.address)
        new_key = generate_controller_key()
        rotate(self.s, self.s.ship_gateway, self.s.chief_key, new_key)
        self.assertEqual(self.s.registry.current_controller(self.s.ship_gateway.address), new_key.address)

    def test_raw_identity_controls_itself(self):
        raw = generate_controller_key().address
        self.assertEqual(self.s.registry.current_controller(raw), raw)

    def test_program_without_controller_resolves_to_zero(self):
        self.assertEqual(self.s.registry.current_controller(self.s.relay.address), ZERO_IDENTITY)

    def test_resolution_never_sees_aborted_rotation(self):
        new_key = generate_controller_key()
        rotation = self.s.intent(self.s.ship_gateway, self.s.chief_key, encode_rotation(new_key.address))
        done = threading.Event()
        failures = []

        def rotate_then_abort():
            try:
                for _ in range(100):
                    try:
                        with self.s.ledger.transaction():
                            self.s.submit(rotation)
                            raise InvalidState("abort")
                    except InvalidState:
                        pass
            except Exception as e:
                failures.append(e)
            finally:
                done.set()

        thread = threading.Thread(target=rotate_then_abort)
        thread.start()
        seen = set()
        while not done.is_set():
            seen.add(self.s.registry.current_controller(self.s.ship_gateway.address))
            time.sleep(0)
        thread.join()
        self.assertEqual(failures, [])
        self.assertEqual(seen - {self.s.chief_key.address}, set())
        self.assertEqual(self.s.ship_gateway.replay_counter, 0)


class TestNomination(unittest.TestCase):

    def setUp(self):
        self.s = Scenario()
        self.s.register()
        self.delivery_id = new_delivery_id()

    def test_nominate(self):
        self.s.nominate(self.delivery_id)
        note = self.s.registry.get_note(self.delivery_id)
        self.assertEqual(note.status, NoteStatus.NOMINATED)
        self.assertEqual(note.imo, IMO)
        self.assertEqual(note.supplier_id, SUPPLIER_ID)
        self.assertEqual(note.expected_sulphur, SULPHUR)
        event = self.s.ledger.events(name="Nominated")[-1]
        self.assertEqual(event.args["deliveryId"], self.delivery_id)

    def test_unknown_note_is_zero_default(self):
        note = self.s.registry.get_note(new_delivery_id("never"))
        self.assertEqual(note.status, NoteStatus.NONE)
        self.assertEqual(note.imo, "")
        self.assertEqual(note.final_quantity, 0)

    def test_controller_itself_is_not_the_account(self):
        with self.assertRaises(AccessDenied):
            self.s.ledger.transact(
                self.s.barge_key.address, self.s.registry.address, NOMINATE_BUNKER,
                self.delivery_id, IMO, SUPPLIER_ID, SULPHUR,
            )

    def test_other_gateway_cannot_nominate(self):
        with self.assertRaises(AccessDenied):
            self.s.ledger.transact(
                self.s.chief_key.address, self.s.ship_gateway.address, EXECUTE, self.s.registry.address, 0,
                encode_call(NOMINATE_BUNKER, self.delivery_id, IMO, SUPPLIER_ID, SULPHUR),
            )

    def test_unregistered_supplier(self):
        with self.assertRaises(AccessDenied):
            self.s.nominate(self.delivery_id, supplier_id=43)

    def test_nominate_twice_fails_regardless_of_caller(self):
        self.s.nominate(self.delivery_id)
        with self.assertRaises(InvalidState):
            self.s.nominate(self.delivery_id)
        with self.assertRaises(InvalidState):
            self.s.ledger.transact(
                generate_controller_key().address, self.s.registry.address, NOMINATE_BUNKER,
                self.delivery_id, IMO, SUPPLIER_ID, SULPHUR,
            )

    def test_nominate_through_relay(self):
        call = encode_call(NOMINATE_BUNKER, self.delivery_id, IMO, SUPPLIER_ID, SULPHUR)
        intent = self.s.intent(
            self.s.supplier_gateway, self.s.barge_key,
            encode_call(EXECUTE, self.s.registry.address, 0, call),
        )
        self.assertTrue(self.s.submit(intent)[0].success)
        self.assertEqual(self.s.registry.get_note(self.delivery_id).status, NoteStatus.NOMINATED)

    def test_raw_supplier_account(self):
        raw = generate_controller_key()
        admin_direct(self.s, encode_call(REGISTER_SUPPLIER, 77, raw.address))
        self.s.ledger.transact(raw.address, self.s.registry.address, NOMINATE_BUNKER, self.delivery_id, IMO, 77, SULPHUR)
        self.assertEqual(self.s.registry.get_note(self.delivery_id).supplier_id, 77)


class TestFinalization(unittest.TestCase):

    def setUp(self):
        self.s = Scenario()
        self.s.register()
        self.delivery_id = new_delivery_id()
        self.s.nominate(self.delivery_id)

    def _finalize_direct(self, sig_supplier, sig_chief):
        return admin_direct(self.s, encode_call(
            FINALIZE_BUNKER, self.delivery_id, DENSITY, QUANTITY, SAMPLE_ID, sig_supplier, sig_chief,
        ))

    def test_finalize(self):
        result = self.s.finalize(self.delivery_id)
        self.assertTrue(result.success)
        note = self.s.registry.get_note(self.delivery_id)
        self.assertEqual(note.status, NoteStatus.FINALIZED)
        self.assertEqual(note.final_density, DENSITY)
        self.assertEqual(note.final_quantity, QUANTITY)
        self.assertEqual(note.sample_id, SAMPLE_ID)
        self.assertEqual(note.finalized_at, FIXED_TIME)
        self.assertEqual(len(note.signature_supplier), 65)
        event = self.s.ledger.events(name="Finalized")[-1]
        self.assertEqual(event.args["quantity"], QUANTITY)
        self.assertEqual(event.args["sigChief"], note.signature_chief)

    def test_swapped_signatures_rejected(self):
        digest = self.s.digest(self.delivery_id)
        sig_supplier = self.s.barge_key.sign_digest(digest)
        sig_chief = self.s.chief_key.sign_digest(digest)
        with self.assertRaises(SignatureInvalid):
            self._finalize_direct(sig_chief, sig_supplier)
        self.assertEqual(self.s.registry.get_note(self.delivery_id).status, NoteStatus.NOMINATED)

    def test_swapped_signatures_through_relay(self):
        digest = self.s.digest(self.delivery_id)
        result = self.s.finalize(
            self.delivery_id,
            sig_supplier=self.s.chief_key.sign_digest(digest),
            sig_chief=self.s.barge_key.sign_digest(digest),
        )
        self.assertFalse(result.success)
        self.assertEqual(result.reason, "SIGNATURE_INVALID")

    def test_signature_over_other_figures_rejected(self):
        wrong = delivery_digest(self.delivery_id, IMO, SUPPLIER_ID, DENSITY, SULPHUR, QUANTITY + 1, SAMPLE_ID)
        with self.assertRaises(SignatureInvalid):
            self._finalize_direct(self.s.barge_key.sign_digest(wrong), self.s.chief_key.sign_digest(wrong))

    def test_malformed_signature_rejected(self):
        digest = self.s.digest(self.delivery_id)
        with self.assertRaises(SignatureInvalid):
            self._finalize_direct(self.s.barge_key.sign_digest(digest), b"\x00" * 65)

    def test_only_owner_finalizes(self):
        digest = self.s.digest(self.delivery_id)
        with self.assertRaises(AccessDenied):
            self.s.ledger.transact(
                self.s.barge_key.address, self.s.supplier_gateway.address, EXECUTE, self.s.registry.address, 0,
                encode_call(
                    FINALIZE_BUNKER, self.delivery_id, DENSITY, QUANTITY, SAMPLE_ID,
                    self.s.barge_key.sign_digest(digest), self.s.chief_key.sign_digest(digest),
                ),
            )

    def test_finalize_requires_nomination(self):
        other = new_delivery_id("BDN-0002")
        with self.assertRaises(InvalidState):
            admin_direct(self.s, encode_call(FINALIZE_BUNKER, other, DENSITY, QUANTITY, SAMPLE_ID, b"", b""))

    def test_finalize_twice_rejected(self):
        self.assertTrue(self.s.finalize(self.delivery_id).success)
        result = self.s.finalize(self.delivery_id)
        self.assertFalse(result.success)
        self.assertEqual(result.reason, "INVALID_STATE")

    def test_rotation_between_nomination_and_finalization(self):
        new_chief = generate_controller_key()
        rotate(self.s, self.s.ship_gateway, self.s.chief_key, new_chief)

        old = self.s.finalize(self.delivery_id)
        self.assertFalse(old.success)
        self.assertEqual(self.s.registry.get_note(self.delivery_id).status, NoteStatus.NOMINATED)

        new = self.s.finalize(self.delivery_id, chief_key=new_chief)
        self.assertTrue(new.success)
        self.assertEqual(self.s.registry.ship_account(IMO), self.s.ship_gateway.address)

    def test_supplier_rotation_observed(self):
        new_barge = generate_controller_key()
        rotate(self.s, self.s.supplier_gateway, self.s.barge_key, new_barge)
        self.assertFalse(self.s.finalize(self.delivery_id).success)
        self.assertTrue(self.s.finalize(self.delivery_id, supplier_key=new_barge).success)


class TestVerifyStoredNote(unittest.TestCase):

    def setUp(self):
        self.s = Scenario()
        self.s.register()
        self.delivery_id = new_delivery_id()
        self.s.nominate(self.delivery_id)
        self.assertTrue(self.s.finalize(self.delivery_id).success)

    def test_valid_with_unchanged_controllers(self):
        check = self.s.registry.verify_stored_note(self.delivery_id)
        self.assertTrue(check.valid)
        self.assertTrue(check.supplier_valid)
        self.assertTrue(check.chief_valid)
        self.assertEqual(check.recovered_supplier, self.s.barge_key.address)
        self.assertEqual(check.recovered_chief, self.s.chief_key.address)

    def test_chief_rotation_invalidates(self):
        rotate(self.s, self.s.ship_gateway, self.s.chief_key, generate_controller_key())
        check = self.s.registry.verify_stored_note(self.delivery_id)
        self.assertFalse(check.valid)
        self.assertFalse(check.chief_valid)
        self.assertTrue(check.supplier_valid)

    def test_supplier_rotation_invalidates(self):
        rotate(self.s, self.s.supplier_gateway, self.s.barge_key, generate_controller_key())
        check = self.s.registry.verify_stored_note(self.delivery_id)
        self.assertFalse(check.valid)
        self.assertFalse(check.supplier_valid)

    def test_stored_signatures_unchanged_by_rotation(self):
        before = self.s.registry.get_note(self.delivery_id)
        rotate(self.s, self.s.ship_gateway, self.s.chief_key, generate_controller_key())
        self.assertEqual(self.s.registry.get_note(self.delivery_id), before)

    def test_not_finalized(self):
        other = new_delivery_id("BDN-0002")
        with self.assertRaises(InvalidState):
            self.s.registry.verify_stored_note(other)
        self.s.nominate(other)
        with self.assertRaises(InvalidState):
            self.s.registry.verify_stored_note(other)


class TestQuantumSeal(unittest.TestCase):

    def setUp(self):
        self.s = Scenario()
        self.s.register()
        self.delivery_id = new_delivery_id()
        self.s.nominate(self.delivery_id)
        self.pdf_hash = document_hash(b"%PDF-1.4 bunker note")

    def _anchor(self):
        return admin_direct(self.s, encode_call(ANCHOR_QUANTUM_SEAL, self.delivery_id, self.pdf_hash, b"\xaa" * 96))

    def test_requires_finalized(self):
        with self.assertRaises(InvalidState):
            self._anchor()

    def test_anchor(self):
        self.s.finalize(self.delivery_id)
        self._anchor()
        note = self.s.registry.get_note(self.delivery_id)
        self.assertEqual(note.status, NoteStatus.QUANTUM_SEALED)
        self.assertEqual(note.pdf_hash, self.pdf_hash)
        self.assertEqual(note.quantum_signature, b"\xaa" * 96)
        self.assertTrue(self.s.registry.verify_stored_note(self.delivery_id).valid)

    def test_anchor_is_terminal(self):
        self.s.finalize(self.delivery_id)
        self._anchor()
        with self.assertRaises(InvalidState):
            self._anchor()


class TestEndToEnd(unittest.TestCase):

    def test_bunkering_scenario(self):
        s = Scenario()
        s.register()
        delivery_id = new_delivery_id("BDN-E2E")

        s.nominate(delivery_id, imo="IMO0001", supplier_id=42, sulphur=500)
        self.assertEqual(s.registry.get_note(delivery_id).status, NoteStatus.NOMINATED)

        self.assertTrue(s.finalize(delivery_id).success)
        note = s.registry.get_note(delivery_id)
        self.assertEqual(note.status, NoteStatus.FINALIZED)
        self.assertEqual((note.final_density, note.final_quantity, note.sample_id), (DENSITY, QUANTITY, SAMPLE_ID))

        pdf_hash = document_hash(b"rendered note")
        seal = s.admin_call(encode_call(ANCHOR_QUANTUM_SEAL, delivery_id, pdf_hash, s.admin_key.sign_digest(pdf_hash)))
        self.assertTrue(seal.success)
        self.assertEqual(s.registry.get_note(delivery_id).status, NoteStatus.QUANTUM_SEALED)

        with self.assertRaises(InvalidState):
            s.nominate(delivery_id)

        names = [e.name for e in s.ledger.events()]
        for expected in ("ShipRegistered", "SupplierRegistered", "Nominated", "Finalized", "SealAnchored"):
            self.assertIn(expected, names)


if __name__ == "__main__":
    unittest.main()
