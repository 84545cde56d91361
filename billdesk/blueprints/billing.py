"""Billing blueprint — subscription checkout and customer portal.

Routes:
- GET  /billing/plans     — active plans, cheapest first
- POST /billing/checkout  — Stripe Checkout Session for a plan (owner only)
- POST /billing/portal    — Stripe Customer Portal Session (owner only)

Subscription state itself only changes through the Stripe webhooks.
"""

import logging

import stripe
from flask import Blueprint, g, jsonify
from flask_login import current_user

from billdesk.decorators import account_member_required
from billdesk.extensions import db
from billdesk.models.account import Plan
from billdesk.policies import AccountPolicy, authorize
from billdesk.services.stripe_service import create_checkout_session, create_portal_session
from billdesk.utils import json_body, unprocessable

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/billing")


# ──────────────────────────────────────────────
# GET /billing/plans
# ──────────────────────────────────────────────

@billing_bp.route("/plans")
def plans():
    active = Plan.query.filter_by(active=True).order_by(Plan.sort_order, Plan.price_cents).all()
    return jsonify(ok=True, plans=[
        {
            "id": p.id,
            "name": p.name,
            "price_cents": p.price_cents,
            "interval": p.interval,
            "monthly_amount": p.monthly_amount,
            "features": p.features or [],
        }
        for p in active
    ])


# ──────────────────────────────────────────────
# POST /billing/checkout
# ──────────────────────────────────────────────

@billing_bp.route("/checkout", methods=["POST"])
@account_member_required
def checkout():
    """Start a subscription checkout. Returns the Stripe URL to redirect to."""
    authorize(AccountPolicy(current_user, g.membership, g.account), "manage_billing")

    plan_id = json_body().get("plan_id")
    plan = db.session.get(Plan, plan_id) if plan_id else None
    if plan is None or not plan.active:
        return unprocessable({"plan_id": "Choose an available plan."})

    try:
        url = create_checkout_session(
            g.account,
            plan,
            customer_email=current_user.email,
            customer_name=current_user.full_name,
        )
    except ValueError as e:
        return unprocessable({"plan_id": str(e)})
    except stripe.error.StripeError as e:
        logger.error(f"Checkout error for account {g.account_id}: {e}", exc_info=True)
        return jsonify(ok=False, error="Something went wrong starting checkout."), 502

    return jsonify(ok=True, url=url)


# ──────────────────────────────────────────────
# POST /billing/portal
# ──────────────────────────────────────────────

@billing_bp.route("/portal", methods=["POST"])
@account_member_required
def customer_portal():
    """Open the Stripe Customer Portal. Needs a prior checkout."""
    authorize(AccountPolicy(current_user, g.membership, g.account), "manage_billing")
    try:
        url = create_portal_session(g.account)
    except ValueError:
        return jsonify(ok=False, error="No billing account found. Please subscribe first."), 409
    except stripe.error.StripeError as e:
        logger.error(f"Portal session error for account {g.account_id}: {e}", exc_info=True)
        return jsonify(ok=False, error="Something went wrong. Please try again."), 502
    return jsonify(ok=True, url=url)
