import io
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from cart import order_total

logger = logging.getLogger(__name__)

MARGIN = 72
TITLE_SIZE = 28
LINE_SIZE = 16
TOTAL_SIZE = 20
LEADING = 1.4


def format_amount(value: float) -> str:
    """Shortest exact form of the stored amount: 10 -> '10', 19.999 -> '19.999'"""
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def invoice_filename(order_id: str) -> str:
    return f"invoice-{order_id}.pdf"


def invoice_lines(order: Dict[str, Any]) -> List[Tuple[str, int]]:
    """Text of the invoice with its font size, built from the order snapshot only."""
    lines = [("Invoice", TITLE_SIZE), ("-----------------------", LINE_SIZE)]
    for line in order.get("products", []):
        product = line["product"]
        lines.append((f"{product['title']} - {line['quantity']} x ${format_amount(product['price'])}", LINE_SIZE))
    lines.append(("---", LINE_SIZE))
    lines.append((f"Total Price: ${format_amount(order_total(order))}", TOTAL_SIZE))
    lines.append(("Thank you", TOTAL_SIZE))
    return lines


def render_invoice(order: Dict[str, Any]) -> bytes:
    buffer = io.BytesIO()
    # invariant mode leaves out timestamps and random ids so output is stable
    pdf = canvas.Canvas(buffer, pagesize=letter, invariant=1)
    pdf.setTitle("Invoice")
    _, height = letter
    y = height - MARGIN
    for index, (text, size) in enumerate(invoice_lines(order)):
        step = size * LEADING
        if y - step < MARGIN:
            pdf.showPage()
            y = height - MARGIN
        y -= step
        pdf.setFont("Helvetica", size)
        pdf.drawString(MARGIN, y, text)
        if index == 0:
            pdf.line(MARGIN, y - 3, MARGIN + pdf.stringWidth(text, "Helvetica", size), y - 3)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def archive_invoice(directory: Optional[str], order_id: str, data: bytes) -> None:
    """Keep a copy of a rendered invoice on disk. Failures are only logged."""
    if not directory:
        return
    try:
        os.makedirs(directory, exist_ok=True)
        with open(os.path.join(directory, invoice_filename(order_id)), "wb") as f:
            f.write(data)
    except OSError as e:
        logger.warning("Could not archive invoice for order %s: %s", order_id, e)
