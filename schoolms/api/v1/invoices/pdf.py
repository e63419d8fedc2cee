"""PDF rendering for invoices and receipts (reportlab canvas)."""

from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from schoolms.api.v1.payments.schemas import ReceiptResponse
from schoolms.core.config import settings

from .schemas import InvoiceDetailResponse


def _money(amount) -> str:
    return f"{settings.currency_code} {float(amount or 0):,.2f}"


def _header(c: canvas.Canvas, title: str, y: float) -> float:
    width, _ = A4
    x = 20 * mm
    c.setFont("Helvetica-Bold", 14)
    c.drawString(x, y, settings.school_name)
    y -= 8 * mm
    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, title)
    y -= 4 * mm
    c.line(x, y, width - 20 * mm, y)
    return y - 8 * mm


def render_invoice_pdf(invoice: InvoiceDetailResponse) -> bytes:
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    x, y = 20 * mm, height - 20 * mm

    y = _header(c, f"Invoice {invoice.invoice_number}", y)
    c.setFont("Helvetica", 11)
    c.drawString(x, y, f"Student: {invoice.student_name or ''}    No: {invoice.student_number or ''}")
    y -= 6 * mm
    c.drawString(x, y, f"Class: {invoice.class_name or '-'}    Period: {invoice.term_name or ''} {invoice.academic_year_name or ''}")
    y -= 6 * mm
    c.drawString(x, y, f"Invoice date: {invoice.invoice_date:%Y-%m-%d}    Due date: {invoice.due_date:%Y-%m-%d}")
    y -= 6 * mm
    c.drawString(x, y, f"Status: {invoice.status.upper()}")
    y -= 10 * mm

    c.setFont("Helvetica-Bold", 10)
    c.drawString(x, y, "Item")
    c.drawString(x + 80 * mm, y, "Qty")
    c.drawRightString(x + 130 * mm, y, "Unit price")
    c.drawRightString(width - 20 * mm, y, "Amount")
    y -= 5 * mm
    c.line(x, y, width - 20 * mm, y)
    y -= 5 * mm

    c.setFont("Helvetica", 10)
    for item in invoice.items:
        if y < 40 * mm:
            c.showPage()
            y = height - 20 * mm
            c.setFont("Helvetica", 10)
        c.drawString(x, y, item.item_name[:45])
        c.drawString(x + 80 * mm, y, str(item.quantity))
        c.drawRightString(x + 130 * mm, y, _money(item.unit_price))
        c.drawRightString(width - 20 * mm, y, _money(item.total_amount))
        y -= 6 * mm

    y -= 4 * mm
    c.line(x + 90 * mm, y, width - 20 * mm, y)
    y -= 6 * mm
    for label, value in (
        ("Total", invoice.total_amount),
        ("Financial aid", invoice.aid_amount),
        ("Paid", invoice.amount_paid),
        ("Balance due", invoice.balance),
    ):
        c.setFont("Helvetica-Bold" if label == "Balance due" else "Helvetica", 10)
        c.drawString(x + 90 * mm, y, label)
        c.drawRightString(width - 20 * mm, y, _money(value))
        y -= 6 * mm

    if invoice.notes:
        y -= 6 * mm
        c.setFont("Helvetica-Oblique", 9)
        for line in invoice.notes.splitlines():
            c.drawString(x, y, line[:100])
            y -= 5 * mm

    c.showPage()
    c.save()
    pdf = buffer.getvalue()
    buffer.close()
    return pdf


def render_receipt_pdf(receipt: ReceiptResponse) -> bytes:
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    _, height = A4
    x, y = 20 * mm, height - 20 * mm

    y = _header(c, f"Receipt {receipt.receipt_number}", y)
    c.setFont("Helvetica", 11)
    lines = [
        f"Received from: {receipt.student_name or ''} ({receipt.student_number or ''})",
        f"Amount: {_money(receipt.amount)}",
        f"Payment date: {receipt.payment_date:%Y-%m-%d}",
        f"Payment method: {receipt.payment_method.replace('_', ' ').title()}",
        f"Payment number: {receipt.payment_number or ''}",
        f"Reference: {receipt.reference_number or '-'}",
        f"Invoice: {receipt.invoice_number or ''}",
        f"Balance after payment: {_money(receipt.invoice_balance)}",
    ]
    for line in lines:
        c.drawString(x, y, line)
        y -= 7 * mm

    y -= 10 * mm
    c.setFont("Helvetica-Oblique", 9)
    c.drawString(x, y, f"Issued {receipt.generated_at:%Y-%m-%d %H:%M}. Thank you for your payment.")

    c.showPage()
    c.save()
    pdf = buffer.getvalue()
    buffer.close()
    return pdf
