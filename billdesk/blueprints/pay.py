"""Pay blueprint — /pay/<payment_token>

Public, unauthenticated invoice view and online payment for clients.
The payment token is the only credential, so nothing here reveals more
than the invoice itself.
"""

import logging

import stripe
from flask import Blueprint, abort, jsonify

from billdesk.extensions import db, limiter
from billdesk.services import invoice_service
from billdesk.services.stripe_service import create_invoice_payment_session

logger = logging.getLogger(__name__)

pay_bp = Blueprint("pay", __name__, url_prefix="/pay")


def _invoice_or_404(payment_token):
    invoice = invoice_service.mark_viewed_by_token(payment_token)
    if invoice is None:
        abort(404)
    return invoice


@pay_bp.route("/<payment_token>")
@limiter.limit("60 per minute")
def show(payment_token):
    invoice = _invoice_or_404(payment_token)
    db.session.commit()
    return jsonify(
        ok=True,
        account_name=invoice.account.name,
        invoice=invoice.to_dict(include_items=True),
        payable=invoice.is_payable,
    )


@pay_bp.route("/<payment_token>/checkout", methods=["POST"])
@limiter.limit("10 per minute")
def checkout(payment_token):
    """Stripe Checkout for the invoice total. Paid on webhook delivery."""
    invoice = _invoice_or_404(payment_token)
    db.session.commit()
    if not invoice.is_payable:
        return jsonify(ok=False, error="This invoice cannot be paid online."), 409
    try:
        url = create_invoice_payment_session(invoice)
    except stripe.error.StripeError as e:
        logger.error(f"Invoice payment session failed for {invoice.id}: {e}", exc_info=True)
        return jsonify(ok=False, error="Payment could not be started."), 502
    return jsonify(ok=True, url=url)
