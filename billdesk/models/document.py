"""Shared pieces of invoices and estimates: numbering, line items, totals."""

import re
from decimal import ROUND_HALF_UP, Decimal

from billdesk.extensions import db

CENTS = Decimal("0.01")
FIRST_DOCUMENT_NUMBER = 10001


def to_money(value):
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def next_document_number(model, column, account_id, prefix):
    """Next "<prefix>-NNNNN" number for the account, starting at 10001."""
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    existing = (
        db.session.query(column)
        .filter(model.account_id == account_id)
        .all()
    )
    highest = FIRST_DOCUMENT_NUMBER - 1
    for (number,) in existing:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{prefix}-{highest + 1}"


class LineItemMixin:
    """Columns shared by invoice and estimate line items."""

    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=1)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False, default=0)

    def calculate_amount(self):
        self.amount = to_money(to_money(self.quantity) * to_money(self.unit_price))
        return self.amount

    def to_dict(self):
        return {
            "id": self.id,
            "description": self.description,
            "quantity": float(to_money(self.quantity)),
            "unit_price": float(to_money(self.unit_price)),
            "amount": float(to_money(self.amount)),
        }


class TotalsMixin:
    """Money columns and totals arithmetic shared by invoices and estimates.

    total = subtotal + subtotal * tax_rate / 100 - discount
    """

    currency = db.Column(db.String(3), nullable=False, default="USD")
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    def calculate_totals(self):
        subtotal = sum(
            (item.calculate_amount() for item in self.line_items),
            Decimal("0.00"),
        )
        self.subtotal = to_money(subtotal)
        self.tax_amount = to_money(self.subtotal * to_money(self.tax_rate) / 100)
        self.total_amount = to_money(
            self.subtotal + self.tax_amount - to_money(self.discount_amount)
        )
        return self.total_amount

    def totals_dict(self):
        return {
            "currency": self.currency,
            "subtotal": float(to_money(self.subtotal)),
            "tax_rate": float(to_money(self.tax_rate)),
            "tax_amount": float(to_money(self.tax_amount)),
            "discount_amount": float(to_money(self.discount_amount)),
            "total_amount": float(to_money(self.total_amount)),
        }
