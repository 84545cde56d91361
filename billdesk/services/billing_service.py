"""Billing service — DB sync helpers for Stripe reconciliation.

Responsible for:
- Mapping Stripe subscription statuses to the local status vocabulary
- Mapping Stripe price IDs to local plans
- Applying subscription state to accounts
- Getting or creating BillingCustomer records
- Marking local invoices paid from Stripe payments

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

from billdesk.extensions import db
from billdesk.models.account import Account, Plan
from billdesk.models.audit import AuditEvent
from billdesk.models.billing import BillingCustomer
from billdesk.models.invoice import Invoice

logger = logging.getLogger(__name__)

# Stripe status -> local status. Statuses not listed here keep the
# account's current status (see map_subscription_status).
STATUS_MAP = {
    "trialing": "trialing",
    "active": "active",
    "past_due": "past_due",
    "canceled": "canceled",
    "unpaid": "canceled",
    "incomplete_expired": "canceled",
    "paused": "paused",
}


def map_subscription_status(stripe_status, fallback):
    """Translate a Stripe status, holding `fallback` for unknown values.

    "incomplete" and any status Stripe adds later are not entitlement
    decisions we can make locally, so the prior status is kept.
    """
    mapped = STATUS_MAP.get(stripe_status)
    if mapped is None:
        logger.warning(
            f"Unrecognized Stripe subscription status '{stripe_status}', "
            f"keeping '{fallback}'"
        )
        return fallback
    return mapped


def price_id_from_subscription(sub_data):
    """items.data[0].price.id of a Stripe subscription payload, or None."""
    items = sub_data.get("items") or {}
    data = items.get("data") or []
    if not data:
        return None
    price = data[0].get("price") or {}
    return price.get("id")


def timestamp_to_datetime(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def get_plan_from_price_id(price_id):
    """Return the Plan with this Stripe price ID, or None."""
    if not price_id:
        return None
    return Plan.query.filter_by(stripe_price_id=price_id).first()


def get_account_from_stripe_customer(stripe_customer_id):
    """Look up the account linked to a Stripe customer ID, or None."""
    if not stripe_customer_id:
        return None
    customer = BillingCustomer.query.filter_by(
        stripe_customer_id=stripe_customer_id
    ).first()
    if customer is None:
        return None
    return Account.kept().filter(Account.id == customer.account_id).first()


def get_or_create_billing_customer(account_id, stripe_customer_id):
    """Get existing BillingCustomer or create one.

    Returns the BillingCustomer instance (flushed).
    """
    customer = BillingCustomer.query.filter_by(account_id=account_id).first()

    if customer:
        if customer.stripe_customer_id != stripe_customer_id:
            customer.stripe_customer_id = stripe_customer_id
            db.session.flush()
        return customer

    customer = BillingCustomer(
        account_id=account_id,
        stripe_customer_id=stripe_customer_id,
    )
    db.session.add(customer)
    db.session.flush()
    return customer


def apply_subscription(account, sub_data):
    """Copy plan, status and trial end from a Stripe subscription onto an account.

    An unknown price ID leaves the plan unchanged.

    Returns (previous_status, new_status).
    """
    previous_status = account.subscription_status
    new_status = map_subscription_status(sub_data.get("status"), previous_status)

    price_id = price_id_from_subscription(sub_data)
    plan = get_plan_from_price_id(price_id)
    if plan is not None:
        account.plan_id = plan.id
    elif price_id:
        logger.warning(
            f"No local plan for Stripe price {price_id}; "
            f"keeping plan of account {account.id}"
        )

    account.subscription_status = new_status
    account.trial_ends_at = timestamp_to_datetime(sub_data.get("trial_end"))
    db.session.flush()
    return previous_status, new_status


def cancel_subscription(account):
    """Drop the account to the free plan with a canceled status."""
    free_plan = Plan.free_plan()
    account.plan_id = free_plan.id if free_plan else None
    account.subscription_status = "canceled"
    account.trial_ends_at = None
    db.session.flush()


def set_subscription_status(account, status):
    previous_status = account.subscription_status
    account.subscription_status = status
    db.session.flush()
    return previous_status


def mark_invoice_paid(invoice_id, payment_reference, paid_at=None):
    """Mark a local invoice paid from a Stripe payment.

    Returns the invoice when it was changed; None when it does not exist
    or was already paid.
    """
    invoice = db.session.get(Invoice, invoice_id) if invoice_id else None
    if invoice is None:
        logger.warning(f"Stripe payment for unknown invoice {invoice_id}")
        return None
    if invoice.is_paid:
        logger.warning(f"Invoice {invoice.invoice_number} already paid, skipping")
        return None

    invoice.mark_as_paid(
        payment_method="stripe", payment_reference=payment_reference, paid_at=paid_at
    )
    db.session.flush()
    return invoice


def log_billing_audit(account_id, action, metadata=None):
    """Log a billing-related audit event.

    Actor is None because webhook events are system-initiated.
    """
    event = AuditEvent(
        account_id=account_id,
        actor_user_id=None,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
