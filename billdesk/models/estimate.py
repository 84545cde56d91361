"""Estimate models — quotes sent to clients ahead of an invoice."""

import uuid
from datetime import date, timedelta

from billdesk.extensions import db
from billdesk.models.document import LineItemMixin, TotalsMixin, next_document_number
from billdesk.utils import utcnow

VALIDITY_DAYS = 30


class Estimate(TotalsMixin, db.Model):
    __tablename__ = "estimates"

    STATUSES = ["draft", "sent", "viewed", "accepted", "declined", "expired", "converted"]
    NUMBER_PREFIX = "EST"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36), db.ForeignKey("accounts.id"), nullable=False, index=True
    )
    client_id = db.Column(
        db.String(36), db.ForeignKey("clients.id"), nullable=False
    )
    estimate_number = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="draft")
    issue_date = db.Column(db.Date, nullable=False, default=date.today)
    valid_until = db.Column(
        db.Date,
        nullable=False,
        default=lambda: date.today() + timedelta(days=VALIDITY_DAYS),
    )
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    declined_at = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    converted_invoice_id = db.Column(
        db.String(36), db.ForeignKey("invoices.id"), nullable=True
    )
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
            "account_id", "estimate_number", name="uq_estimate_account_number"
        ),
    )

    # --- Relationships ---
    account = db.relationship("Account", back_populates="estimates")
    client = db.relationship("Client", back_populates="estimates")
    converted_invoice = db.relationship("Invoice")
    line_items = db.relationship(
        "EstimateLineItem",
        back_populates="estimate",
        cascade="all, delete-orphan",
        order_by="EstimateLineItem.position",
    )

    @classmethod
    def next_number(cls, account_id):
        return next_document_number(
            cls, cls.estimate_number, account_id, cls.NUMBER_PREFIX
        )

    @property
    def is_draft(self):
        return self.status == "draft"

    @property
    def is_converted(self):
        return self.status == "converted"

    @property
    def is_accepted(self):
        return self.status == "accepted"

    @property
    def can_convert(self):
        return self.is_accepted and self.converted_invoice_id is None

    @property
    def is_expired(self):
        if self.status in ("accepted", "declined", "converted"):
            return False
        return self.status == "expired" or (
            self.valid_until is not None and self.valid_until < date.today()
        )

    def mark_as_sent(self):
        self.status = "sent"
        self.sent_at = utcnow()

    def mark_as_viewed(self):
        if self.status == "sent":
            self.status = "viewed"
            self.viewed_at = utcnow()

    def mark_as_accepted(self):
        self.status = "accepted"
        self.accepted_at = utcnow()

    def mark_as_declined(self):
        self.status = "declined"
        self.declined_at = utcnow()

    def to_dict(self, include_items=False):
        data = {
            "id": self.id,
            "estimate_number": self.estimate_number,
            "client_id": self.client_id,
            "status": self.status,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "converted_invoice_id": self.converted_invoice_id,
            "notes": self.notes,
        }
        data.update(self.totals_dict())
        if include_items:
            data["line_items"] = [item.to_dict() for item in self.line_items]
        return data

    def __repr__(self):
        return f"<Estimate {self.estimate_number} ({self.status})>"


class EstimateLineItem(LineItemMixin, db.Model):
    __tablename__ = "estimate_line_items"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    estimate_id = db.Column(
        db.String(36),
        db.ForeignKey("estimates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    estimate = db.relationship("Estimate", back_populates="line_items")

    def __repr__(self):
        return f"<EstimateLineItem {self.description}>"
