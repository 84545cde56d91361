"""Account and plan models.

- Account: the top-level tenant. Every client, invoice, estimate and
  membership belongs to exactly one account.
- Plan: a subscription tier, linked to a Stripe price ID.

accounts.subscription_status is the entitlement state, kept in sync with
Stripe by the webhook reconciliation in stripe_service.
"""

import re
import uuid
from datetime import timedelta

from billdesk.extensions import db
from billdesk.utils import as_utc, utcnow

TRIAL_DAYS = 14


def _default_trial_end():
    return utcnow() + timedelta(days=TRIAL_DAYS)


class Plan(db.Model):
    __tablename__ = "plans"

    INTERVALS = ["month", "year"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    stripe_price_id = db.Column(db.String(255), unique=True, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    interval = db.Column(db.String(20), nullable=False, default="month")
    trial_days = db.Column(db.Integer, default=TRIAL_DAYS)
    active = db.Column(db.Boolean, default=True)
    sort_order = db.Column(db.Integer, default=0)
    features = db.Column(db.JSON, default=list)
    limits = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.CheckConstraint("price_cents >= 0", name="ck_plans_price_non_negative"),
    )

    # --- Relationships ---
    accounts = db.relationship("Account", back_populates="plan", lazy="dynamic")

    @classmethod
    def free_plan(cls):
        """The plan canceled accounts fall back to (first active zero-price plan)."""
        return (
            cls.query
            .filter_by(active=True, price_cents=0)
            .order_by(cls.sort_order, cls.created_at)
            .first()
        )

    @property
    def is_free(self):
        return (self.price_cents or 0) == 0

    @property
    def monthly_amount(self):
        """Price normalized to one month, in major currency units."""
        amount = (self.price_cents or 0) / 100.0
        if self.interval == "year":
            return amount / 12
        return amount

    def has_feature(self, feature):
        return feature in (self.features or [])

    def limit_for(self, resource):
        return (self.limits or {}).get(resource)

    def __repr__(self):
        return f"<Plan {self.name} ({self.price_cents}/{self.interval})>"


class Account(db.Model):
    __tablename__ = "accounts"

    # -- Valid subscription statuses (local vocabulary, not Stripe's) --
    STATUSES = ["trialing", "active", "past_due", "canceled", "paused"]

    RESERVED_SUBDOMAINS = (
        "www", "admin", "api", "app", "mail", "ftp", "smtp", "pop",
        "imap", "blog", "support", "help", "docs", "status",
    )
    SUBDOMAIN_RE = re.compile(r"^[a-z0-9]+$")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), unique=True, nullable=False)
    subdomain = db.Column(db.String(63), unique=True, nullable=True)
    subscription_status = db.Column(
        db.String(50), nullable=False, default="trialing"
    )  # trialing | active | past_due | canceled | paused
    plan_id = db.Column(
        db.String(36), db.ForeignKey("plans.id"), nullable=True
    )
    trial_ends_at = db.Column(
        db.DateTime(timezone=True), nullable=True, default=_default_trial_end
    )
    discarded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    plan = db.relationship("Plan", back_populates="accounts")
    memberships = db.relationship(
        "Membership",
        back_populates="account",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    billing_customer = db.relationship(
        "BillingCustomer",
        back_populates="account",
        uselist=False,
        cascade="all, delete-orphan",
    )
    clients = db.relationship("Client", back_populates="account", lazy="dynamic")
    invoices = db.relationship("Invoice", back_populates="account", lazy="dynamic")
    estimates = db.relationship("Estimate", back_populates="account", lazy="dynamic")
    audit_events = db.relationship(
        "AuditEvent", back_populates="account", lazy="dynamic"
    )

    @classmethod
    def kept(cls):
        """Query over accounts that have not been soft-deleted."""
        return cls.query.filter(cls.discarded_at.is_(None))

    @property
    def is_discarded(self):
        return self.discarded_at is not None

    def discard(self):
        self.discarded_at = utcnow()

    @property
    def is_active(self):
        return self.subscription_status in ("active", "trialing")

    @property
    def is_trial_expired(self):
        if self.subscription_status != "trialing" or self.trial_ends_at is None:
            return False
        return as_utc(self.trial_ends_at) < utcnow()

    @property
    def days_remaining_in_trial(self):
        if self.subscription_status != "trialing" or self.trial_ends_at is None:
            return 0
        remaining = (as_utc(self.trial_ends_at) - utcnow()).days
        return max(remaining, 0)

    @property
    def owner_membership(self):
        return self.memberships.filter_by(role="owner").first()

    def __repr__(self):
        return f"<Account {self.name} ({self.subscription_status})>"
