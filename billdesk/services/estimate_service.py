"""Estimate service — quotes and their conversion into invoices.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import date, timedelta

from billdesk.extensions import db
from billdesk.models.audit import AuditEvent
from billdesk.models.client import Client
from billdesk.models.estimate import VALIDITY_DAYS, Estimate, EstimateLineItem
from billdesk.models.invoice import PAYMENT_TERMS_DAYS, Invoice, InvoiceLineItem
from billdesk.services import document_service
from billdesk.services.tenant_service import scoped
from billdesk.utils import utcnow

logger = logging.getLogger(__name__)


def _audit(estimate, actor, action, metadata=None):
    db.session.add(AuditEvent(
        account_id=estimate.account_id,
        actor_user_id=actor.id if actor else None,
        action=action,
        metadata_={"estimate_id": estimate.id, **(metadata or {})},
    ))


def search_estimates(account_id, q=None, status=None, client_id=None):
    query = scoped(Estimate, account_id)
    if status in Estimate.STATUSES:
        query = query.filter(Estimate.status == status)
    if client_id:
        query = query.filter(Estimate.client_id == client_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.outerjoin(Client, Client.id == Estimate.client_id).filter(
            db.or_(
                Estimate.estimate_number.ilike(pattern),
                Client.name.ilike(pattern),
                Client.company.ilike(pattern),
            )
        )
    return query.order_by(Estimate.issue_date.desc(), Estimate.created_at.desc())


def create_estimate(account_id, data, actor=None):
    """Create a draft estimate.

    Returns:
        tuple: (estimate, errors)
    """
    errors = {}
    client = document_service.resolve_client(account_id, data.get("client_id"), errors)

    estimate = Estimate(account_id=account_id, status="draft")
    document_service.apply_header(estimate, data, errors, "valid_until")
    if estimate.valid_until is None and estimate.issue_date is not None:
        estimate.valid_until = estimate.issue_date + timedelta(days=VALIDITY_DAYS)
    items = document_service.build_line_items(
        EstimateLineItem, data.get("line_items"), errors
    )
    if errors:
        return None, errors

    estimate.client_id = client.id
    estimate.line_items = items
    estimate.calculate_totals()
    document_service.check_discount(estimate, errors)
    if errors:
        return None, errors

    estimate.estimate_number = Estimate.next_number(account_id)
    db.session.add(estimate)
    db.session.flush()
    _audit(estimate, actor, "estimate.created")
    db.session.flush()
    return estimate, None


def update_estimate(estimate, data):
    """Edit an estimate that has not been converted. Returns errors or None."""
    if estimate.is_converted:
        raise ValueError("Converted estimates cannot be edited.")

    errors = {}
    if "client_id" in data:
        client = document_service.resolve_client(
            estimate.account_id, data.get("client_id"), errors
        )
        if client is not None:
            estimate.client_id = client.id
    document_service.apply_header(estimate, data, errors, "valid_until")
    if "line_items" in data:
        items = document_service.build_line_items(
            EstimateLineItem, data.get("line_items"), errors
        )
        if not errors:
            estimate.line_items = items
    if errors:
        return errors

    estimate.calculate_totals()
    document_service.check_discount(estimate, errors)
    if errors:
        return errors
    db.session.flush()
    return None


def send_estimate(estimate, actor=None):
    from billdesk.services.mailers import send_estimate_email

    if not estimate.is_draft:
        raise ValueError("Only draft estimates can be sent.")
    if estimate.client is None or not estimate.client.email:
        raise ValueError("Client has no email address.")

    estimate.mark_as_sent()
    _audit(estimate, actor, "estimate.sent")
    db.session.flush()
    send_estimate_email(estimate)
    return estimate


def accept_estimate(estimate, actor=None):
    if estimate.status not in ("sent", "viewed"):
        raise ValueError("Only sent estimates can be accepted.")
    estimate.mark_as_accepted()
    _audit(estimate, actor, "estimate.accepted")
    db.session.flush()
    return estimate


def decline_estimate(estimate, actor=None):
    if estimate.status not in ("sent", "viewed"):
        raise ValueError("Only sent estimates can be declined.")
    estimate.mark_as_declined()
    _audit(estimate, actor, "estimate.declined")
    db.session.flush()
    return estimate


def convert_to_invoice(estimate, actor=None):
    """Copy an accepted estimate into a new draft invoice.

    The invoice is issued today, due in the standard payment terms, and
    carries the estimate's tax, discount, notes and line items.
    """
    if not estimate.can_convert:
        raise ValueError("Only accepted estimates can be converted.")

    today = date.today()
    invoice = Invoice(
        account_id=estimate.account_id,
        client_id=estimate.client_id,
        invoice_number=Invoice.next_number(estimate.account_id),
        status="draft",
        issue_date=today,
        due_date=today + timedelta(days=PAYMENT_TERMS_DAYS),
        currency=estimate.currency,
        tax_rate=estimate.tax_rate,
        discount_amount=estimate.discount_amount,
        notes=estimate.notes,
    )
    invoice.line_items = [
        InvoiceLineItem(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            position=item.position,
        )
        for item in estimate.line_items
    ]
    invoice.calculate_totals()
    db.session.add(invoice)
    db.session.flush()

    estimate.status = "converted"
    estimate.converted_at = utcnow()
    estimate.converted_invoice_id = invoice.id
    _audit(estimate, actor, "estimate.converted", {"invoice_id": invoice.id})
    db.session.flush()
    logger.info(
        f"Converted estimate {estimate.estimate_number} to invoice {invoice.invoice_number}"
    )
    return invoice


def delete_estimate(estimate):
    if not estimate.is_draft:
        raise ValueError("Only draft estimates can be deleted.")
    db.session.delete(estimate)
    db.session.flush()
