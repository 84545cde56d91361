"""Billing models.

- BillingCustomer: links an account to its Stripe customer ID. Webhook
  events carry only the customer ID, so this is how they find their account.
"""

import uuid

from billdesk.extensions import db


class BillingCustomer(db.Model):
    __tablename__ = "billing_customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36),
        db.ForeignKey("accounts.id"),
        unique=True,
        nullable=False,
    )
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    account = db.relationship("Account", back_populates="billing_customer")

    def __repr__(self):
        return f"<BillingCustomer stripe={self.stripe_customer_id}>"
