"""Client model — a customer of an account, billed through invoices."""

import uuid

from billdesk.extensions import db


class Client(db.Model):
    __tablename__ = "clients"

    STATUSES = ["active", "archived"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36), db.ForeignKey("accounts.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    company = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("account_id", "email", name="uq_client_account_email"),
    )

    # --- Relationships ---
    account = db.relationship("Account", back_populates="clients")
    invoices = db.relationship("Invoice", back_populates="client", lazy="dynamic")
    estimates = db.relationship("Estimate", back_populates="client", lazy="dynamic")

    @property
    def display_name(self):
        return self.company or self.name

    def total_revenue(self):
        from billdesk.models.invoice import Invoice

        return sum((i.total_amount for i in self.invoices.filter(Invoice.status == "paid")), 0)

    def outstanding_balance(self):
        from billdesk.models.invoice import Invoice

        unpaid = self.invoices.filter(Invoice.status.in_(Invoice.UNPAID_STATUSES))
        return sum((i.total_amount for i in unpaid), 0)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "phone": self.phone,
            "address": self.address,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Client {self.name}>"
