"""Invoice PDF rendering."""
from datetime import datetime
from io import BytesIO

from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from settings import settings

PRIMARY = HexColor("#2D3436")
SECONDARY = HexColor("#00B894")
ACCENT = HexColor("#FDCB6E")
LIGHT_GRAY = HexColor("#DDD5D0")
ROW_ALT = HexColor("#F8F9FA")

MARGIN = 40
ROW_HEIGHT = 24
# Column x-offsets (from the left margin) and widths for the items table
COLUMNS = [("ITEM", 0, 280), ("QTY", 280, 60), ("PRICE", 340, 80), ("TOTAL", 420, 95)]


def money(value) -> str:
    return f"Rs. {float(value):,.2f}"


def invoice_number(order: dict) -> str:
    return str(order.get("id") or order.get("_id"))[-8:].upper()


def _order_date(order: dict) -> str:
    created = order.get("created_at")
    if isinstance(created, str):
        created = datetime.fromisoformat(created)
    return created.strftime("%d/%m/%Y") if created else ""


def _fit(c, text: str, font: str, size: int, width: float) -> str:
    if c.stringWidth(text, font, size) <= width:
        return text
    while text and c.stringWidth(text + "...", font, size) > width:
        text = text[:-1]
    return text + "..."


class InvoiceRenderer:
    def __init__(self, order: dict, customer_name: str, customer_email: str):
        self.order = order
        self.customer_name = customer_name
        self.customer_email = customer_email
        self.buffer = BytesIO()
        self.canvas = canvas.Canvas(self.buffer, pagesize=A4)
        self.canvas.setTitle(f"Invoice - {invoice_number(order)}")
        self.canvas.setAuthor(settings.STORE_NAME)
        self.canvas.setSubject("Order Invoice")
        self.width, self.height = A4
        self.y = self.height
        self.page_count = 0

    def _ensure_space(self, needed: float, repeat_header: bool = True):
        if self.y - needed >= MARGIN:
            return
        self.canvas.showPage()
        self.y = self.height - MARGIN
        if repeat_header:
            self._table_header()

    def _header(self):
        c = self.canvas
        c.setFillColor(PRIMARY)
        c.rect(0, self.height - 120, self.width, 120, stroke=0, fill=1)
        c.setFillColor(white)
        c.setFont("Helvetica-Bold", 28)
        c.drawString(MARGIN, self.height - 60, settings.STORE_NAME.upper())
        c.setFont("Helvetica", 12)
        c.drawString(MARGIN, self.height - 85, "Premium Shopping Experience")
        c.setFillColor(ACCENT)
        c.setFont("Helvetica-Bold", 24)
        c.drawRightString(self.width - MARGIN, self.height - 60, "INVOICE")
        c.setFillColor(white)
        c.setFont("Helvetica", 10)
        c.drawRightString(self.width - MARGIN, self.height - 80, f"Invoice #{invoice_number(self.order)}")
        c.drawRightString(self.width - MARGIN, self.height - 94, f"Date: {_order_date(self.order)}")
        self.y = self.height - 150

    def _bill_to(self):
        c = self.canvas
        c.setFillColor(PRIMARY)
        c.setFont("Helvetica-Bold", 14)
        c.drawString(MARGIN, self.y, "BILL TO:")
        c.setFont("Helvetica", 12)
        lines = [self.customer_name, self.customer_email]
        address = self.order.get("shipping_address") or {}
        if any(address.values()):
            lines.append(address.get("street") or "")
            lines.append(f"{address.get('city') or ''}, {address.get('postal_code') or ''}")
            lines.append(address.get("country") or "")
        for line in lines:
            self.y -= 16
            c.drawString(MARGIN, self.y, line or "")
        self.y -= 30

    def _payment_box(self):
        c = self.canvas
        box_width = self.width - 2 * MARGIN
        col = box_width / 3
        c.setFillColor(LIGHT_GRAY)
        c.rect(MARGIN, self.y - 34, box_width, 40, stroke=0, fill=1)
        c.setFillColor(PRIMARY)
        c.setFont("Helvetica-Bold", 10)
        c.drawString(MARGIN + 10, self.y - 8, "Order ID:")
        c.drawString(MARGIN + col, self.y - 8, "Payment ID:")
        c.drawString(MARGIN + 2 * col, self.y - 8, "Status:")
        c.setFont("Helvetica", 10)
        c.drawString(MARGIN + 10, self.y - 24, _fit(c, self.order.get("razorpay_order_id", ""), "Helvetica", 10, col - 20))
        c.drawString(MARGIN + col, self.y - 24, (self.order.get("razorpay_payment_id") or "")[-16:])
        c.drawString(MARGIN + 2 * col, self.y - 24, "PAID")
        self.y -= 60

    def _table_header(self):
        c = self.canvas
        c.setFillColor(SECONDARY)
        c.rect(MARGIN, self.y - ROW_HEIGHT, self.width - 2 * MARGIN, ROW_HEIGHT, stroke=0, fill=1)
        c.setFillColor(white)
        c.setFont("Helvetica-Bold", 11)
        for title, offset, width in COLUMNS:
            if title == "ITEM":
                c.drawString(MARGIN + 10, self.y - 16, title)
            else:
                c.drawCentredString(MARGIN + offset + width / 2, self.y - 16, title)
        self.y -= ROW_HEIGHT

    def _rows(self):
        c = self.canvas
        for index, item in enumerate(self.order.get("items", [])):
            self._ensure_space(ROW_HEIGHT)
            c.setFillColor(white if index % 2 == 0 else ROW_ALT)
            c.rect(MARGIN, self.y - ROW_HEIGHT, self.width - 2 * MARGIN, ROW_HEIGHT, stroke=0, fill=1)
            c.setFillColor(PRIMARY)
            c.setFont("Helvetica", 10)
            price = float(item["price_at_purchase"])
            cells = [
                _fit(c, item["name_at_purchase"], "Helvetica", 10, COLUMNS[0][2] - 20),
                str(item["quantity"]),
                money(price),
                money(price * item["quantity"]),
            ]
            c.drawString(MARGIN + 10, self.y - 16, cells[0])
            for (_, offset, width), text in zip(COLUMNS[1:], cells[1:]):
                c.drawCentredString(MARGIN + offset + width / 2, self.y - 16, text)
            self.y -= ROW_HEIGHT

    def _totals(self):
        c = self.canvas
        discount = float(self.order.get("coupon_discount_amount") or 0)
        self._ensure_space(110 if discount else 70, repeat_header=False)
        self.y -= 10
        label_x = self.width - MARGIN - 130
        if discount > 0:
            c.setFillColor(PRIMARY)
            c.setFont("Helvetica", 11)
            c.drawRightString(label_x, self.y - 12, "Subtotal:")
            c.drawRightString(self.width - MARGIN, self.y - 12, money(self.order.get("subtotal", 0)))
            self.y -= 20
            c.setFillColor(SECONDARY)
            c.drawRightString(label_x, self.y - 12, "Coupon Discount:")
            c.drawRightString(self.width - MARGIN, self.y - 12, f"-{money(discount)}")
            self.y -= 25

        box_width = 250
        box_x = self.width - MARGIN - box_width
        c.setFillColor(PRIMARY)
        c.rect(box_x, self.y - 40, box_width, 40, stroke=0, fill=1)
        c.setFillColor(white)
        c.setFont("Helvetica-Bold", 14)
        c.drawString(box_x + 15, self.y - 25, "TOTAL AMOUNT")
        c.setFont("Helvetica-Bold", 16)
        c.drawRightString(box_x + box_width - 15, self.y - 26, money(self.order.get("total_amount", 0)))
        self.y -= 40

    def _footer(self):
        if self.y < 150:
            return
        c = self.canvas
        footer_y = min(self.y - 30, 120)
        c.setFillColor(LIGHT_GRAY)
        c.rect(0, footer_y - 120, self.width, 120, stroke=0, fill=1)
        c.setFillColor(PRIMARY)
        c.setFont("Helvetica-Bold", 14)
        c.drawCentredString(self.width / 2, footer_y - 30, "Thank you for your business!")
        c.setFont("Helvetica", 9)
        c.drawCentredString(self.width / 2, footer_y - 50, f"For any queries, contact us at {settings.SUPPORT_EMAIL}")
        c.drawCentredString(self.width / 2, footer_y - 64, f"Visit us at {settings.FRONTEND_URL}")

    def render(self) -> bytes:
        self._header()
        self._bill_to()
        self._payment_box()
        self._table_header()
        self._rows()
        self._totals()
        self._footer()
        self.page_count = self.canvas.getPageNumber()
        self.canvas.showPage()
        self.canvas.save()
        return self.buffer.getvalue()


def render_invoice(order: dict, customer_name: str, customer_email: str) -> bytes:
    """Render the invoice for a serialized order and return the PDF bytes."""
    return InvoiceRenderer(order, customer_name, customer_email).render()
