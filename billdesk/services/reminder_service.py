"""Reminder service — payment reminder emails for unpaid invoices.

Two daily sweeps, both run by the payment_reminders job:
  - due_soon: unpaid invoices falling due within the next DUE_SOON_DAYS
  - overdue:  first flips sent/viewed invoices past their due date to
              "overdue", then reminds every unpaid invoice past due

A single invoice can also be reminded on demand. Every send respects a
cooldown between reminders and a cap on how many one invoice gets,
unless forced.

Functions commit per invoice so one bad send does not undo the others.
"""

import logging
from datetime import date, timedelta

from billdesk.extensions import db
from billdesk.models.account import Account
from billdesk.models.invoice import Invoice
from billdesk.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

REMINDER_COOLDOWN_DAYS = 3
MAX_REMINDERS = 5
DUE_SOON_DAYS = 7


def _unpaid_invoices():
    return (
        Invoice.query
        .join(Account, Account.id == Invoice.account_id)
        .filter(
            Invoice.status.in_(Invoice.UNPAID_STATUSES),
            Account.discarded_at.is_(None),
        )
    )


def can_send_reminder(invoice, force=False):
    """Return (allowed, reason). Reason explains a refusal."""
    if invoice.is_paid:
        return False, "Invoice is already paid"
    if invoice.is_draft:
        return False, "Invoice has not been sent yet"
    if invoice.is_cancelled:
        return False, "Invoice is cancelled"
    if force:
        return True, None
    if (invoice.reminder_count or 0) >= MAX_REMINDERS:
        return False, f"Maximum reminders ({MAX_REMINDERS}) already sent"
    if invoice.last_reminder_sent_at is not None:
        next_allowed = as_utc(invoice.last_reminder_sent_at) + timedelta(
            days=REMINDER_COOLDOWN_DAYS
        )
        if utcnow() < next_allowed:
            return False, f"Reminder sent within the last {REMINDER_COOLDOWN_DAYS} days"
    return True, None


def send_reminder(invoice, force=False):
    """Send one reminder.

    Returns:
        dict: {"success": bool, "message": str}
    """
    from billdesk.services.mailers import send_payment_reminder_email

    allowed, reason = can_send_reminder(invoice, force=force)
    if not allowed:
        return {"success": False, "message": reason}

    try:
        send_payment_reminder_email(invoice)
    except ValueError as e:
        return {"success": False, "message": str(e)}

    invoice.reminder_count = (invoice.reminder_count or 0) + 1
    invoice.last_reminder_sent_at = utcnow()
    db.session.commit()
    logger.info(
        f"Payment reminder {invoice.reminder_count} sent for invoice {invoice.invoice_number}"
    )
    return {"success": True, "message": "Reminder sent"}


def _remind_all(invoices):
    sent = 0
    for invoice in invoices:
        try:
            result = send_reminder(invoice)
        except Exception as e:
            db.session.rollback()
            logger.error(
                f"Reminder failed for invoice {invoice.id}: {e}", exc_info=True
            )
            continue
        if result["success"]:
            sent += 1
    return sent


def send_due_soon_reminders():
    """Remind unpaid invoices due between today and DUE_SOON_DAYS from now."""
    today = date.today()
    invoices = _unpaid_invoices().filter(
        Invoice.due_date >= today,
        Invoice.due_date <= today + timedelta(days=DUE_SOON_DAYS),
    ).all()
    sent = _remind_all(invoices)
    logger.info(f"Due-soon reminders: {sent} of {len(invoices)} sent")
    return {"sent_count": sent}


def mark_overdue_invoices():
    """Flip sent/viewed invoices past their due date to overdue."""
    today = date.today()
    invoices = Invoice.query.filter(
        Invoice.status.in_(("sent", "viewed")),
        Invoice.due_date < today,
    ).all()
    for invoice in invoices:
        invoice.status = "overdue"
    db.session.commit()
    return len(invoices)


def send_overdue_reminders():
    marked = mark_overdue_invoices()
    invoices = _unpaid_invoices().filter(Invoice.due_date < date.today()).all()
    sent = _remind_all(invoices)
    logger.info(f"Overdue reminders: marked {marked} overdue, {sent} reminders sent")
    return {"sent_count": sent, "marked_overdue": marked}
