"""Invoice models.

- Invoice: a bill sent to a client. Numbered INV-10001 upward per account.
- InvoiceLineItem: one priced line on an invoice.

Status flow: draft -> sent -> viewed -> paid, with overdue set by the
payment reminder job and cancelled reachable from any unpaid state.
"""

import secrets
import uuid
from datetime import date, timedelta

from billdesk.extensions import db
from billdesk.models.document import LineItemMixin, TotalsMixin, next_document_number
from billdesk.utils import utcnow

PAYMENT_TERMS_DAYS = 30


class Invoice(TotalsMixin, db.Model):
    __tablename__ = "invoices"

    STATUSES = ["draft", "sent", "viewed", "paid", "overdue", "cancelled"]
    PAYABLE_STATUSES = ("sent", "viewed", "overdue")
    UNPAID_STATUSES = ("sent", "viewed", "overdue")
    NUMBER_PREFIX = "INV"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36), db.ForeignKey("accounts.id"), nullable=False, index=True
    )
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id"), nullable=False
    )
    invoice_number = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft")
    issue_date = db.Column(db.Date, nullable=False, default=date.today)
    due_date = db.Column(
        db.Date,
        nullable=False,
        default=lambda: date.today() + timedelta(days=PAYMENT_TERMS_DAYS),
    )
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_method = db.Column(db.String(50), nullable=True)
    payment_reference = db.Column(db.String(255), nullable=True)
    payment_token = db.Column(
        db.String(64),
        unique=True,
        nullable=False,
        default=lambda: secrets.token_urlsafe(24),
    )
    reminder_count = db.Column(db.Integer, nullable=False, default=0)
    last_reminder_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "account_id", "invoice_number", name="uq_invoice_account_number"
        ),
    )

    # --- Relationships ---
    account = db.relationship("Account", back_populates="invoices")
    client = db.relationship("Client", back_populates="invoices")
    line_items = db.relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.position",
    )

    @classmethod
    def next_number(cls, account_id):
        return next_document_number(
            cls, cls.invoice_number, account_id, cls.NUMBER_PREFIX
        )

    @property
    def is_draft(self):
        return self.status == "draft"

    @property
    def is_paid(self):
        return self.status == "paid"

    @property
    def is_cancelled(self):
        return self.status == "cancelled"

    @property
    def is_payable(self):
        return self.status in self.PAYABLE_STATUSES

    @property
    def is_past_due(self):
        return self.is_payable and self.due_date is not None and self.due_date < date.today()

    @property
    def days_overdue(self):
        if not self.is_past_due:
            return 0
        return (date.today() - self.due_date).days

    def mark_as_sent(self):
        self.status = "sent"
        self.sent_at = utcnow()

    def mark_as_viewed(self):
        if self.status == "sent":
            self.status = "viewed"
            self.viewed_at = utcnow()

    def mark_as_paid(self, payment_method="stripe", payment_reference=None, paid_at=None):
        self.status = "paid"
        self.paid_at = paid_at or utcnow()
        self.payment_method = payment_method
        self.payment_reference = payment_reference

    def to_dict(self, include_items=False):
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "client_id": self.client_id,
            "status": self.status,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
        }
        data.update(self.totals_dict())
        if include_items:
            data["line_items"] = [item.to_dict() for item in self.line_items]
        return data

    def __repr__(self):
        return f"<Invoice {self.invoice_number} ({self.status})>"


class InvoiceLineItem(LineItemMixin, db.Model):
    __tablename__ = "invoice_line_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    invoice_id = db.Column(
        db.String(36),
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    invoice = db.relationship("Invoice", back_populates="line_items")

    def __repr__(self):
        return f"<InvoiceLineItem {self.description}>"
