"""
Email service.

Sends templated HTML email over SMTP. Used by the mailers for invoices,
estimates, payment notices and invitations.

Usage:
    from billdesk.services.email_service import send_email

    send_email(
        to="user@example.com",
        subject="Hello",
        template="emails/invitation.html",
        context={"name": "Jane"},
        attachments=[("Invoice-INV-10001.pdf", pdf_bytes, "application/pdf")],
    )
"""

import logging
import smtplib
import threading
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Deliver a built message over SMTP. Logs, never raises."""
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        if not username or not password:
            logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
            return

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except Exception as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def build_message(to, subject, template, context=None, reply_to=None, attachments=None):
    """Render the template and assemble a MIME message.

    attachments: iterable of (filename, bytes, mimetype) tuples.
    """
    app = current_app._get_current_object()
    context = context or {}

    from_name = app.config.get("MAIL_FROM_NAME", "Billdesk")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    html_body = render_template(template, **context)

    msg = MIMEMultipart("mixed" if attachments else "alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))

    for filename, content, mimetype in attachments or ():
        subtype = mimetype.split("/", 1)[-1]
        part = MIMEApplication(content, _subtype=subtype)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg


def send_email(to, subject, template, context=None, reply_to=None, attachments=None):
    """
    Send a templated HTML email in a background thread.

    Args:
        to:          Recipient email address (str or list).
        subject:     Email subject line.
        template:    Path to Jinja2 HTML template (relative to templates/).
        context:     Dict of variables to pass to the template.
        reply_to:    Optional reply-to address.
        attachments: Optional list of (filename, bytes, mimetype).
    """
    app = current_app._get_current_object()
    msg = build_message(to, subject, template, context, reply_to, attachments)

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()
    return msg


def send_email_sync(to, subject, template, context=None, reply_to=None, attachments=None):
    """
    Same as send_email but blocks until sent. Background jobs use this so
    the worker, not a stray thread, owns delivery.
    """
    app = current_app._get_current_object()
    msg = build_message(to, subject, template, context, reply_to, attachments)
    _send_smtp(app, msg)
    return msg
