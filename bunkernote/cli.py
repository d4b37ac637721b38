#!/usr/bin/env python3
"""
BunkerNote Command Line Interface

Usage:
    bunkernote keygen [--output <file>]
    bunkernote address --key <hex>
    bunkernote digest --note <file>
    bunkernote sign --key <hex> --digest <hex>
    bunkernote recover --digest <hex> --signature <hex> [--raw]
    bunkernote demo
    bunkernote serve [--host <host>] [--port <port>]
"""

import argparse
import json
import sys
from typing import List, Optional

from eth_utils import decode_hex


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def parse_delivery_id(value: str) -> bytes:
    """A 0x-prefixed 32-byte hex id, or any other token hashed into one."""
    from bunkernote.hashing import delivery_id_from_text

    if value.startswith("0x") and len(value) == 66:
        return decode_hex(value)
    return delivery_id_from_text(value)


def cmd_keygen(args):
    """Generate a controller key."""
    from bunkernote.signing import generate_controller_key

    key = generate_controller_key().to_dict()
    if args.output:
        save_json(key, args.output)
        print(f"Key saved to: {args.output}")
        print(f"Address: {key['address']}")
    else:
        print(json.dumps(key, indent=2))
    return 0


def cmd_address(args):
    """Print the identity of a controller key."""
    from bunkernote.signing import ControllerKey

    print(ControllerKey.from_hex(args.key).address)
    return 0


def cmd_digest(args):
    """Compute the delivery digest both parties sign."""
    from bunkernote.hashing import delivery_digest

    note = load_json(args.note)
    digest = delivery_digest(
        parse_delivery_id(str(note["delivery_id"])),
        note["imo"],
        int(note["supplier_id"]),
        int(note["final_density"]),
        int(note["expected_sulphur"]),
        int(note["final_quantity"]),
        note["sample_id"],
    )
    print("0x" + digest.hex())
    return 0


def cmd_sign(args):
    """Sign a digest with a controller key."""
    from bunkernote.signing import sign_digest

    print("0x" + sign_digest(decode_hex(args.digest), args.key).hex())
    return 0


def cmd_recover(args):
    """Recover the signer of a digest."""
    from bunkernote.identity import is_zero
    from bunkernote.signing import recover, recover_signed_digest

    digest = decode_hex(args.digest)
    signature = decode_hex(args.signature)
    signer = recover(digest, signature) if args.raw else recover_signed_digest(digest, signature)
    print(signer)
    if is_zero(signer):
        print("✗ signature could not be attributed", file=sys.stderr)
        return 1
    return 0


def cmd_demo(args):
    """Run the end-to-end bunkering scenario."""
    from bunkernote.deployment import deploy_system
    from bunkernote.gateway import Intent, encode_execute, encode_rotation
    from bunkernote.hashing import delivery_digest, delivery_id_from_text, document_hash, encode_call
    from bunkernote.registry import (
        ANCHOR_QUANTUM_SEAL,
        FINALIZE_BUNKER,
        NOMINATE_BUNKER,
        REGISTER_SHIP,
        REGISTER_SUPPLIER,
    )
    from bunkernote.relay import submit_intents
    from bunkernote.signing import generate_controller_key

    print("=" * 60)
    print("BunkerNote Demonstration")
    print("=" * 60)

    admin_key = generate_controller_key()
    chief_key = generate_controller_key()
    barge_key = generate_controller_key()
    bundler = generate_controller_key().address

    system = deploy_system(admin_controller=admin_key.address)
    registry = system.registry
    ship_gateway = system.create_gateway(chief_key.address)
    supplier_gateway = system.create_gateway(barge_key.address)
    admin_gateway = system.gateway(system.admin)

    print(f"\nRegistry: {registry.address}")
    print(f"Admin gateway: {admin_gateway.address}")
    print(f"Ship gateway (chief): {ship_gateway.address}")
    print(f"Supplier gateway (barge): {supplier_gateway.address}")

    def admin_intent(call: bytes) -> Intent:
        intent = Intent(
            sender=admin_gateway.address,
            forwarded_call=encode_execute(registry.address, 0, call),
            replay_value=admin_gateway.replay_counter,
        )
        return intent.signed_by(admin_key)

    delivery_id = delivery_id_from_text("BDN-DEMO-0001")
    imo, supplier_id, sulphur = "IMO0001", 42, 500
    density, quantity, sample_id = 991, 1250, "SAMPLE-0001"

    print("\n" + "-" * 60)
    print("Step 1: register ship and supplier")
    print("-" * 60)
    submit_intents(system.ledger, bundler, system.relay.address, [
        admin_intent(encode_call(REGISTER_SHIP, imo, ship_gateway.address)),
    ])
    submit_intents(system.ledger, bundler, system.relay.address, [
        admin_intent(encode_call(REGISTER_SUPPLIER, supplier_id, supplier_gateway.address)),
    ])
    print(f"{imo} -> {registry.ship_account(imo)}")
    print(f"supplier {supplier_id} -> {registry.supplier_account(supplier_id)}")

    print("\n" + "-" * 60)
    print("Step 2: supplier nominates the delivery (controller fast path)")
    print("-" * 60)
    system.ledger.transact(
        barge_key.address, supplier_gateway.address, "execute(address,uint256,bytes)",
        registry.address, 0, encode_call(NOMINATE_BUNKER, delivery_id, imo, supplier_id, sulphur),
    )
    print(f"Status: {registry.get_note(delivery_id).status.value}")

    print("\n" + "-" * 60)
    print("Step 3: admin finalizes with both off-band signatures")
    print("-" * 60)
    digest = delivery_digest(delivery_id, imo, supplier_id, density, sulphur, quantity, sample_id)
    results = submit_intents(system.ledger, bundler, system.relay.address, [
        admin_intent(encode_call(
            FINALIZE_BUNKER, delivery_id, density, quantity, sample_id,
            barge_key.sign_digest(digest), chief_key.sign_digest(digest),
        )),
    ])
    print(f"Forwarded: {results[0].success}")
    print(f"Status: {registry.get_note(delivery_id).status.value}")
    print(f"Verification: {registry.verify_stored_note(delivery_id).valid}")

    print("\n" + "-" * 60)
    print("Step 4: chief rotates controller; stored note re-checked live")
    print("-" * 60)
    new_chief = generate_controller_key()
    rotation = Intent(
        sender=ship_gateway.address,
        forwarded_call=encode_rotation(new_chief.address),
        replay_value=ship_gateway.replay_counter,
    ).signed_by(chief_key)
    submit_intents(system.ledger, bundler, system.relay.address, [rotation])
    print(f"Ship account unchanged: {registry.ship_account(imo) == ship_gateway.address}")
    print(f"Verification after rotation: {registry.verify_stored_note(delivery_id).valid}")

    print("\n" + "-" * 60)
    print("Step 5: anchor quantum seal")
    print("-" * 60)
    pdf_hash = document_hash(b"demo bunker delivery note")
    submit_intents(system.ledger, bundler, system.relay.address, [
        admin_intent(encode_call(ANCHOR_QUANTUM_SEAL, delivery_id, pdf_hash, admin_key.sign_digest(pdf_hash))),
    ])
    print(f"Status: {registry.get_note(delivery_id).status.value}")

    print("\nEvents:")
    for event in system.ledger.events():
        print(f"  {event.sequence:3d} {event.name}")

    ok = registry.get_note(delivery_id).status.value == "QuantumSealed"
    print(f"\n{'✓' if ok else '✗'} scenario {'complete' if ok else 'failed'}", file=sys.stderr)
    return 0 if ok else 1


def cmd_serve(args):
    """Run the HTTP service."""
    try:
        import uvicorn
    except ImportError:
        print("uvicorn required. Install with: pip install bunkernote[serve]", file=sys.stderr)
        return 1
    from bunkernote.service import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    from bunkernote import config
    from bunkernote.logging_config import configure_logging

    parser = argparse.ArgumentParser(
        prog="bunkernote",
        description="Bunker delivery authorization via delegated Gateways",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a controller key")
    keygen_parser.add_argument("-o", "--output", help="Output file for the key")

    address_parser = subparsers.add_parser("address", help="Identity of a controller key")
    address_parser.add_argument("-k", "--key", required=True, help="Private key (hex)")

    digest_parser = subparsers.add_parser("digest", help="Compute a delivery digest")
    digest_parser.add_argument("-n", "--note", required=True, help="Delivery figures JSON file")

    sign_parser = subparsers.add_parser("sign", help="Sign a digest")
    sign_parser.add_argument("-k", "--key", required=True, help="Private key (hex)")
    sign_parser.add_argument("-d", "--digest", required=True, help="32-byte digest (hex)")

    recover_parser = subparsers.add_parser("recover", help="Recover a signer")
    recover_parser.add_argument("-d", "--digest", required=True, help="32-byte digest (hex)")
    recover_parser.add_argument("-s", "--signature", required=True, help="65-byte signature (hex)")
    recover_parser.add_argument("--raw", action="store_true", help="Digest was signed without the wallet prefix")

    subparsers.add_parser("demo", help="Run demonstration")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(
        level=config.LOG_LEVEL if args.command == "serve" else "WARNING",
        json_format=config.LOG_JSON,
        log_file=config.LOG_FILE or None,
    )

    commands = {
        "keygen": cmd_keygen,
        "address": cmd_address,
        "digest": cmd_digest,
        "sign": cmd_sign,
        "recover": cmd_recover,
        "demo": cmd_demo,
        "serve": cmd_serve,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
