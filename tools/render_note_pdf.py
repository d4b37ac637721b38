"""
Render a delivery note to PDF and print the hash to anchor with
anchorQuantumSeal.

Usage:
    python tools/render_note_pdf.py <delivery_id> <note.json> [out.pdf]

note.json is the body returned by GET /notes/{delivery_id}.
"""

import json
import sys
from pathlib import Path

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from bunkernote.hashing import document_hash

FIELDS = (
    ("IMO", "imo"),
    ("Supplier", "supplier_id"),
    ("Status", "status"),
    ("Expected sulphur", "expected_sulphur"),
    ("Final density", "final_density"),
    ("Final quantity", "final_quantity"),
    ("Sample", "sample_id"),
    ("Finalized at", "finalized_at"),
)


def render(delivery_id: str, note: dict, pdf_path: Path) -> bytes:
    # invariant output so the same note always hashes the same
    c = canvas.Canvas(str(pdf_path), pagesize=A4, invariant=1)
    y = A4[1] - 72
    c.setFont("Times-Roman", 14)
    c.drawString(72, y, "Bunker Delivery Note")
    y -= 24
    c.setFont("Times-Roman", 10)
    c.drawString(72, y, f"Delivery: {delivery_id}")
    y -= 24
    c.setFont("Times-Roman", 11)
    for label, key in FIELDS:
        c.drawString(72, y, f"{label}: {note.get(key, '')}")
        y -= 18
    y -= 12
    c.setFont("Courier", 7)
    for label, key in (("Supplier signature", "signature_supplier"), ("Chief signature", "signature_chief")):
        c.drawString(72, y, f"{label}: {note.get(key, '0x')}")
        y -= 12
    c.showPage()
    c.save()
    return pdf_path.read_bytes()


def main():
    if len(sys.argv) < 3:
        print(__doc__.strip(), file=sys.stderr)
        sys.exit(2)
    delivery_id = sys.argv[1]
    note = json.loads(Path(sys.argv[2]).read_text(encoding="utf-8"))
    pdf_path = Path(sys.argv[3]) if len(sys.argv) > 3 else Path(f"bunker_note_{delivery_id[2:10]}.pdf")

    data = render(delivery_id, note, pdf_path)
    print(json.dumps({"pdf": str(pdf_path), "pdf_hash": "0x" + document_hash(data).hex()}, indent=2))


if __name__ == "__main__":
    main()
