"""Invoice service — drafting, sending, payment and cancellation.

Functions flush but do NOT commit — the caller commits.

Validation problems come back as a dict of field errors; calling an
action the invoice's state does not allow raises ValueError.
"""

import logging
from datetime import timedelta

from billdesk.extensions import db
from billdesk.models.audit import AuditEvent
from billdesk.models.client import Client
from billdesk.models.invoice import PAYMENT_TERMS_DAYS, Invoice, InvoiceLineItem
from billdesk.services import document_service
from billdesk.services.tenant_service import scoped

logger = logging.getLogger(__name__)


def _audit(invoice, actor, action, metadata=None):
    db.session.add(AuditEvent(
        account_id=invoice.account_id,
        actor_user_id=actor.id if actor else None,
        action=action,
        metadata_={"invoice_id": invoice.id, **(metadata or {})},
    ))


def search_invoices(account_id, q=None, status=None, client_id=None):
    """Tenant-scoped invoices, newest issue date first."""
    query = scoped(Invoice, account_id)
    if status in Invoice.STATUSES:
        query = query.filter(Invoice.status == status)
    if client_id:
        query = query.filter(Invoice.client_id == client_id)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.outerjoin(Client, Client.id == Invoice.client_id).filter(
            db.or_(
                Invoice.invoice_number.ilike(pattern),
                Client.name.ilike(pattern),
                Client.company.ilike(pattern),
            )
        )
    return query.order_by(Invoice.issue_date.desc(), Invoice.created_at.desc())


def create_invoice(account_id, data, actor=None):
    """Create a draft invoice with its line items and totals.

    Returns:
        tuple: (invoice, errors)
    """
    errors = {}
    client = document_service.resolve_client(account_id, data.get("client_id"), errors)

    invoice = Invoice(account_id=account_id, status="draft")
    document_service.apply_header(invoice, data, errors, "due_date")
    if invoice.due_date is None and invoice.issue_date is not None:
        invoice.due_date = invoice.issue_date + timedelta(days=PAYMENT_TERMS_DAYS)
    items = document_service.build_line_items(
        InvoiceLineItem, data.get("line_items"), errors
    )
    if errors:
        return None, errors

    invoice.client_id = client.id
    invoice.line_items = items
    invoice.calculate_totals()
    document_service.check_discount(invoice, errors)
    if errors:
        return None, errors

    invoice.invoice_number = Invoice.next_number(account_id)
    db.session.add(invoice)
    db.session.flush()
    _audit(invoice, actor, "invoice.created")
    db.session.flush()
    logger.info(f"Created invoice {invoice.invoice_number} in account {account_id}")
    return invoice, None


def update_invoice(invoice, data):
    """Edit an unpaid invoice. Replaces all line items when they are given.

    Returns:
        dict of field errors, or None on success.
    """
    if invoice.is_paid:
        raise ValueError("Paid invoices cannot be edited.")

    errors = {}
    if "client_id" in data:
        client = document_service.resolve_client(
            invoice.account_id, data.get("client_id"), errors
        )
        if client is not None:
            invoice.client_id = client.id
    document_service.apply_header(invoice, data, errors, "due_date")
    if "line_items" in data:
        items = document_service.build_line_items(
            InvoiceLineItem, data.get("line_items"), errors
        )
        if not errors:
            invoice.line_items = items
    if errors:
        return errors

    invoice.calculate_totals()
    document_service.check_discount(invoice, errors)
    if errors:
        return errors
    db.session.flush()
    return None


def send_invoice(invoice, actor=None):
    """Mark a draft invoice sent and email it to the client.

    Raises:
        ValueError: If the invoice is not a draft or the client has no email.
    """
    from billdesk.services.mailers import send_invoice_email

    if not invoice.is_draft:
        raise ValueError("Only draft invoices can be sent.")
    if invoice.client is None or not invoice.client.email:
        raise ValueError("Client has no email address.")

    invoice.mark_as_sent()
    _audit(invoice, actor, "invoice.sent")
    db.session.flush()
    send_invoice_email(invoice)
    logger.info(f"Invoice {invoice.invoice_number} sent to {invoice.client.email}")
    return invoice


def record_payment(invoice, payment_method="manual", payment_reference=None, actor=None):
    """Record a payment received outside Stripe.

    Raises:
        ValueError: If the invoice is not awaiting payment.
    """
    if not invoice.is_payable:
        raise ValueError("Only sent, viewed or overdue invoices can be marked paid.")
    invoice.mark_as_paid(
        payment_method=payment_method or "manual",
        payment_reference=payment_reference,
    )
    _audit(invoice, actor, "invoice.paid", {"payment_method": invoice.payment_method})
    db.session.flush()
    return invoice


def cancel_invoice(invoice, actor=None):
    if invoice.is_paid:
        raise ValueError("Paid invoices cannot be cancelled.")
    if invoice.is_cancelled:
        return invoice
    invoice.status = "cancelled"
    _audit(invoice, actor, "invoice.cancelled")
    db.session.flush()
    return invoice


def delete_invoice(invoice):
    if not invoice.is_draft:
        raise ValueError("Only draft invoices can be deleted.")
    db.session.delete(invoice)
    db.session.flush()


def mark_viewed_by_token(payment_token):
    """Public lookup by payment token; a sent invoice becomes viewed.

    Returns the invoice or None. Cancelled and draft invoices are not
    exposed publicly.
    """
    if not payment_token:
        return None
    invoice = Invoice.query.filter_by(payment_token=payment_token).first()
    if invoice is None or invoice.is_draft or invoice.is_cancelled:
        return None
    if invoice.status == "sent":
        invoice.mark_as_viewed()
        db.session.flush()
    return invoice
