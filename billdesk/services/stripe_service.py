"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions (plan subscriptions, invoice payments)
- Creating Stripe Customer Portal Sessions
- Handling incoming webhooks with signature verification
- Dispatching to event-specific handlers
- Idempotency via stripe_events table

Webhook handlers treat a reference they cannot resolve (unknown customer,
missing invoice metadata) as irrelevant: they log a warning and return
without writing. Anything else that goes wrong propagates, so the route
answers 500 and Stripe redelivers the event.
"""

import json
import logging

import stripe
from flask import current_app

from billdesk.extensions import db
from billdesk.models.billing import BillingCustomer
from billdesk.models.document import to_money
from billdesk.models.stripe_event import StripeEvent
from billdesk.services.billing_service import (
    apply_subscription,
    cancel_subscription,
    get_account_from_stripe_customer,
    get_or_create_billing_customer,
    log_billing_audit,
    map_subscription_status,
    mark_invoice_paid,
    set_subscription_status,
    timestamp_to_datetime,
)

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Email Notifications
# ──────────────────────────────────────────────

def _notify(send, label, *args):
    """Run a mailer, never letting email failure break reconciliation."""
    try:
        send(*args)
    except Exception as e:
        logger.error(f"Failed to send {label} email: {e}")


# ──────────────────────────────────────────────
# Checkout & Portal Sessions
# ──────────────────────────────────────────────

def _ensure_stripe_customer(account, customer_email=None, customer_name=None):
    """Return the account's Stripe customer ID, creating the customer if needed."""
    billing_customer = BillingCustomer.query.filter_by(account_id=account.id).first()
    if billing_customer:
        return billing_customer.stripe_customer_id

    params = {"metadata": {"account_id": str(account.id)}, "name": account.name}
    if customer_email:
        params["email"] = customer_email
    if customer_name:
        params["name"] = customer_name
    customer = stripe.Customer.create(**params)
    get_or_create_billing_customer(account.id, customer.id)
    db.session.commit()
    return customer.id


def create_checkout_session(account, plan, customer_email=None, customer_name=None):
    """Create a Stripe Checkout Session subscribing the account to a plan.

    Returns the Stripe checkout session URL.
    Raises ValueError if the plan has no Stripe price.
    Raises stripe.error.StripeError on API failures.
    """
    if not plan.stripe_price_id:
        raise ValueError("This plan cannot be purchased.")

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]

    customer_id = _ensure_stripe_customer(account, customer_email, customer_name)
    session = stripe.checkout.Session.create(
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
        success_url=f"{app_base_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{app_base_url}/billing/cancel",
        metadata={"account_id": str(account.id), "plan_id": str(plan.id)},
    )
    return session.url


def create_portal_session(account):
    """Create a Stripe Customer Portal Session.

    Returns the portal session URL.
    Raises ValueError if no billing customer exists.
    Raises stripe.error.StripeError on API failures.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]

    billing_customer = BillingCustomer.query.filter_by(account_id=account.id).first()
    if not billing_customer:
        raise ValueError("No billing customer found for this account")

    session = stripe.billing_portal.Session.create(
        customer=billing_customer.stripe_customer_id,
        return_url=f"{app_base_url}/account",
    )
    return session.url


def create_invoice_payment_session(invoice):
    """Create a one-off Checkout Session paying a client invoice.

    The invoice id travels in the session metadata and comes back on
    checkout.session.completed / payment_intent.succeeded.

    Raises ValueError if the invoice is not payable.
    """
    if not invoice.is_payable:
        raise ValueError("This invoice cannot be paid online.")

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]
    metadata = {"invoice_id": str(invoice.id), "account_id": str(invoice.account_id)}

    session = stripe.checkout.Session.create(
        mode="payment",
        customer_email=invoice.client.email if invoice.client else None,
        line_items=[{
            "price_data": {
                "currency": (invoice.currency or "USD").lower(),
                "unit_amount": int((to_money(invoice.total_amount) * 100).to_integral_value()),
                "product_data": {"name": f"Invoice {invoice.invoice_number}"},
            },
            "quantity": 1,
        }],
        success_url=f"{app_base_url}/pay/{invoice.payment_token}?status=success",
        cancel_url=f"{app_base_url}/pay/{invoice.payment_token}?status=cancelled",
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
    )
    return session.url


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe webhook signature and return the event as a plain dict.

    construct_event() only checks the signature here; its StripeObject is
    not a dict, so the handlers work on the parsed payload instead.
    Raises stripe.error.SignatureVerificationError on invalid signature.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    return json.loads(payload)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: checks stripe_events table before processing. The event
    is recorded only after its handler succeeded.

    Returns a status string ("processed", "ignored", "already_processed").
    Re-raises handler errors after rolling back.
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    existing = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return "already_processed"

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info(f"Ignoring unhandled webhook event type {event_type}")
        status = "ignored"
    else:
        obj = event["data"]["object"]
        logger.info(f"Processing {event_type} for {obj.get('id') or obj.get('customer')}")
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Error handling {event_type}: {e}", exc_info=True)
            db.session.rollback()
            raise
        status = "processed"

    # --- Record event for idempotency ---
    db.session.add(StripeEvent(stripe_event_id=event_id, event_type=event_type))
    db.session.commit()
    return status


# ──────────────────────────────────────────────
# Subscription Handlers
# ──────────────────────────────────────────────

def _account_for(obj, event_type):
    account = get_account_from_stripe_customer(obj.get("customer"))
    if account is None:
        logger.warning(
            f"{event_type}: no account for customer={obj.get('customer')}"
        )
    return account


def _handle_subscription_created(event):
    sub_data = event["data"]["object"]
    account = _account_for(sub_data, "customer.subscription.created")
    if account is None:
        return

    previous, new = apply_subscription(account, sub_data)
    log_billing_audit(account.id, "subscription.created", {
        "stripe_subscription_id": sub_data.get("id"),
        "status": new,
        "plan_id": account.plan_id,
    })
    logger.info(f"Account {account.id} subscribed ({previous} -> {new})")


def _handle_subscription_updated(event):
    sub_data = event["data"]["object"]
    account = _account_for(sub_data, "customer.subscription.updated")
    if account is None:
        return

    previous, new = apply_subscription(account, sub_data)
    log_billing_audit(account.id, "subscription.updated", {
        "stripe_subscription_id": sub_data.get("id"),
        "previous_status": previous,
        "status": new,
        "plan_id": account.plan_id,
    })
    logger.info(f"Account {account.id} subscription updated: {previous} -> {new}")

    if new == "past_due" and previous != "past_due":
        from billdesk.services.mailers import send_payment_issue_email
        _notify(send_payment_issue_email, "payment issue", account)


def _handle_subscription_deleted(event):
    sub_data = event["data"]["object"]
    account = _account_for(sub_data, "customer.subscription.deleted")
    if account is None:
        return

    cancel_subscription(account)
    log_billing_audit(account.id, "subscription.deleted", {
        "stripe_subscription_id": sub_data.get("id"),
    })
    logger.info(f"Account {account.id} subscription canceled, moved to free plan")

    from billdesk.services.mailers import send_subscription_canceled_email
    _notify(send_subscription_canceled_email, "subscription canceled", account)


def _handle_trial_will_end(event):
    sub_data = event["data"]["object"]
    account = _account_for(sub_data, "customer.subscription.trial_will_end")
    if account is None:
        return
    logger.info(f"Account {account.id} trial ending soon")


def _handle_subscription_paused(event):
    sub_data = event["data"]["object"]
    account = _account_for(sub_data, "customer.subscription.paused")
    if account is None:
        return

    previous = set_subscription_status(account, "paused")
    log_billing_audit(account.id, "subscription.paused", {"previous_status": previous})
    logger.info(f"Account {account.id} subscription paused")


def _handle_subscription_resumed(event):
    sub_data = event["data"]["object"]
    account = _account_for(sub_data, "customer.subscription.resumed")
    if account is None:
        return

    status = map_subscription_status(sub_data.get("status"), account.subscription_status)
    previous = set_subscription_status(account, status)
    log_billing_audit(account.id, "subscription.resumed", {
        "previous_status": previous,
        "status": status,
    })
    logger.info(f"Account {account.id} subscription resumed ({status})")


def _handle_payment_failed(event):
    invoice_data = event["data"]["object"]
    account = _account_for(invoice_data, "invoice.payment_failed")
    if account is None:
        return

    previous = set_subscription_status(account, "past_due")
    log_billing_audit(account.id, "invoice.payment_failed", {
        "stripe_invoice_id": invoice_data.get("id"),
        "amount_due": invoice_data.get("amount_due"),
    })
    logger.warning(
        f"Account {account.id} payment failed for invoice {invoice_data.get('id')}"
    )

    if previous != "past_due":
        from billdesk.services.mailers import send_payment_issue_email
        _notify(send_payment_issue_email, "payment issue", account)


def _handle_payment_succeeded(event):
    invoice_data = event["data"]["object"]
    account = _account_for(invoice_data, "invoice.payment_succeeded")
    if account is None:
        return

    # Only a past_due account recovers; other statuses are Stripe's to set.
    if account.subscription_status == "past_due":
        set_subscription_status(account, "active")
        log_billing_audit(account.id, "invoice.payment_succeeded", {
            "stripe_invoice_id": invoice_data.get("id"),
            "amount_paid": invoice_data.get("amount_paid"),
        })
        logger.info(f"Account {account.id} payment recovered, status now active")


# ──────────────────────────────────────────────
# Invoice Payment Handlers
# ──────────────────────────────────────────────

def _record_invoice_payment(invoice_id, reference, event):
    event_type = event["type"]
    invoice = mark_invoice_paid(
        invoice_id, reference, paid_at=timestamp_to_datetime(event.get("created"))
    )
    if invoice is None:
        return

    log_billing_audit(invoice.account_id, "invoice.paid", {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "payment_reference": reference,
        "source": event_type,
    })
    logger.info(f"Invoice {invoice.invoice_number} marked paid via {event_type}")

    from billdesk.services.mailers import send_payment_received_email
    _notify(send_payment_received_email, "payment received", invoice)


def _handle_checkout_completed(event):
    session_data = event["data"]["object"]
    metadata = session_data.get("metadata") or {}
    invoice_id = metadata.get("invoice_id")
    if not invoice_id:
        logger.info("checkout.session.completed without invoice_id, skipping")
        return
    if session_data.get("payment_status") != "paid":
        logger.warning(
            f"checkout.session.completed for invoice {invoice_id} "
            f"not paid (payment_status={session_data.get('payment_status')})"
        )
        return

    _record_invoice_payment(
        invoice_id, session_data.get("payment_intent"), event
    )


def _handle_payment_intent_succeeded(event):
    intent_data = event["data"]["object"]
    metadata = intent_data.get("metadata") or {}
    invoice_id = metadata.get("invoice_id")
    if not invoice_id:
        logger.info("payment_intent.succeeded without invoice_id, skipping")
        return

    _record_invoice_payment(
        invoice_id, intent_data.get("id"), event
    )


EVENT_HANDLERS = {
    "customer.subscription.created": _handle_subscription_created,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "customer.subscription.trial_will_end": _handle_trial_will_end,
    "customer.subscription.paused": _handle_subscription_paused,
    "customer.subscription.resumed": _handle_subscription_resumed,
    "invoice.payment_failed": _handle_payment_failed,
    "invoice.payment_succeeded": _handle_payment_succeeded,
    "checkout.session.completed": _handle_checkout_completed,
    "payment_intent.succeeded": _handle_payment_intent_succeeded,
}
