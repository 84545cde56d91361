"""Mailers — the transactional emails the app sends.

Each function gathers its recipients and template context, then hands off
to email_service. Invoice and estimate emails attach the PDF only when it
rendered; a failed render still sends the email without the attachment.
"""

import logging

from flask import current_app

from billdesk.models.membership import Membership
from billdesk.services.email_service import send_email, send_email_sync
from billdesk.services.pdf_service import generate_estimate_pdf, generate_invoice_pdf

logger = logging.getLogger(__name__)


def _base_url():
    return current_app.config["APP_BASE_URL"]


def _owner_emails(account):
    owners = account.memberships.filter(
        Membership.role.in_(("owner", "admin")),
        Membership.user_id.isnot(None),
    ).all()
    return [m.user.email for m in owners if m.user and m.user.email]


def _pdf_attachment(result):
    if not result.success:
        logger.warning(f"Sending without PDF attachment: {result.error}")
        return None
    return [(result.filename, result.pdf, "application/pdf")]


# ──────────────────────────────────────────────
# Client-facing documents
# ──────────────────────────────────────────────

def send_invoice_email(invoice, sync=False):
    """Email an invoice to its client with the PDF attached when available."""
    client = invoice.client
    if client is None or not client.email:
        raise ValueError("Client has no email address.")

    sender = send_email_sync if sync else send_email
    return sender(
        to=client.email,
        subject=f"Invoice {invoice.invoice_number} from {invoice.account.name}",
        template="emails/invoice.html",
        context={
            "invoice": invoice,
            "account": invoice.account,
            "client": client,
            "payment_url": f"{_base_url()}/pay/{invoice.payment_token}",
        },
        attachments=_pdf_attachment(generate_invoice_pdf(invoice)),
    )


def send_estimate_email(estimate, sync=False):
    """Email an estimate to its client with the PDF attached when available."""
    client = estimate.client
    if client is None or not client.email:
        raise ValueError("Client has no email address.")

    sender = send_email_sync if sync else send_email
    return sender(
        to=client.email,
        subject=f"Estimate {estimate.estimate_number} from {estimate.account.name}",
        template="emails/estimate.html",
        context={
            "estimate": estimate,
            "account": estimate.account,
            "client": client,
        },
        attachments=_pdf_attachment(generate_estimate_pdf(estimate)),
    )


def send_payment_received_email(invoice):
    if invoice.client is None or not invoice.client.email:
        return None
    return send_email(
        to=invoice.client.email,
        subject=f"Payment received for invoice {invoice.invoice_number}",
        template="emails/payment_received.html",
        context={"invoice": invoice, "account": invoice.account, "client": invoice.client},
    )


def send_payment_reminder_email(invoice):
    """Reminder for an unpaid invoice. Sent synchronously from the reminder job."""
    if invoice.client is None or not invoice.client.email:
        raise ValueError("Client has no email address.")

    overdue = invoice.is_past_due
    subject = (
        f"Overdue: invoice {invoice.invoice_number}"
        if overdue
        else f"Reminder: invoice {invoice.invoice_number} is due soon"
    )
    return send_email_sync(
        to=invoice.client.email,
        subject=subject,
        template="emails/payment_reminder.html",
        context={
            "invoice": invoice,
            "account": invoice.account,
            "client": invoice.client,
            "overdue": overdue,
            "days_overdue": invoice.days_overdue,
            "payment_url": f"{_base_url()}/pay/{invoice.payment_token}",
        },
    )


# ──────────────────────────────────────────────
# Account notifications
# ──────────────────────────────────────────────

def send_invitation_email(membership):
    inviter = membership.invited_by
    return send_email_sync(
        to=membership.invitation_email,
        subject=f"You've been invited to {membership.account.name}",
        template="emails/invitation.html",
        context={
            "account": membership.account,
            "role": membership.role,
            "inviter_name": (inviter.full_name or inviter.email) if inviter else None,
            "accept_url": (
                f"{_base_url()}/auth/invitations/{membership.invitation_token}/accept"
            ),
        },
    )


def send_payment_issue_email(account):
    recipients = _owner_emails(account)
    if not recipients:
        logger.warning(f"No owner email for account {account.id}, payment issue not sent")
        return None
    return send_email(
        to=recipients,
        subject=f"Payment issue on your {account.name} subscription",
        template="emails/payment_issue.html",
        context={"account": account, "billing_url": f"{_base_url()}/account"},
    )


def send_subscription_canceled_email(account):
    recipients = _owner_emails(account)
    if not recipients:
        return None
    return send_email(
        to=recipients,
        subject=f"Your {account.name} subscription was canceled",
        template="emails/subscription_canceled.html",
        context={"account": account, "billing_url": f"{_base_url()}/account"},
    )
