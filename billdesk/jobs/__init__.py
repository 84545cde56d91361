"""Background jobs (Celery).

The Celery app is configured from the Flask app's CELERY dict in
init_celery(), and every task runs inside a Flask app context.

Start a worker and the beat scheduler with:
    celery -A billdesk.worker.celery worker --loglevel=info
    celery -A billdesk.worker.celery beat --loglevel=info

Jobs receive record ids, never objects. A record that has disappeared
by the time the job runs is logged and skipped.
"""

import logging

from celery import Celery, Task
from flask import has_app_context
from sqlalchemy.exc import OperationalError

from billdesk.extensions import db

logger = logging.getLogger(__name__)

celery = Celery("billdesk")


class BaseTask(Task):
    """Shared retry policy, app context and failure logging.

    OperationalError covers lock timeouts and dropped connections; those
    retry with exponential backoff and jitter, capped at five minutes.
    """

    abstract = True
    autoretry_for = (OperationalError,)
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True
    max_retries = 5

    def __call__(self, *args, **kwargs):
        if has_app_context():
            return super().__call__(*args, **kwargs)
        flask_app = getattr(self.app, "flask_app", None)
        if flask_app is None:
            raise RuntimeError("Celery is not bound to a Flask app; call init_celery().")
        with flask_app.app_context():
            return super().__call__(*args, **kwargs)

    def before_start(self, task_id, args, kwargs):
        logger.info(f"[Job Start] {self.name} ({task_id})")

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"[Job Complete] {self.name} ({task_id})")

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"[Job Failed] {self.name} ({task_id}): {exc}", exc_info=exc)


def init_celery(app):
    """Bind the Celery app to a Flask app and load its CELERY config."""
    celery.conf.update(app.config.get("CELERY", {}))
    celery.flask_app = app
    app.extensions["celery"] = celery
    return celery


# ──────────────────────────────────────────────
# Tasks
# ──────────────────────────────────────────────

@celery.task(bind=True, base=BaseTask, name="billdesk.jobs.cache_warmup")
def cache_warmup(self, scope="all"):
    from billdesk.services.cache_service import warmup

    return warmup(scope)


@celery.task(bind=True, base=BaseTask, name="billdesk.jobs.cleanup_expired_sessions")
def cleanup_expired_sessions(self, expiry_days=None, inactive_days=None):
    from flask import current_app

    from billdesk.services.auth_service import cleanup_expired_sessions as sweep

    return sweep(
        expiry_days=expiry_days or current_app.config.get("SESSION_MAX_AGE_DAYS", 30),
        inactive_days=inactive_days or current_app.config.get("SESSION_INACTIVE_DAYS", 7),
    )


@celery.task(bind=True, base=BaseTask, name="billdesk.jobs.export_data")
def export_data(self, user_id, export_type):
    from billdesk.services.export_service import export_data as build_export

    return build_export(user_id, export_type)


@celery.task(bind=True, base=BaseTask, name="billdesk.jobs.send_account_invitation")
def send_account_invitation(self, membership_id):
    """Email a pending invitation. Missing rows and blank emails are skipped."""
    from billdesk.models.membership import Membership
    from billdesk.services.mailers import send_invitation_email

    membership = db.session.get(Membership, membership_id) if membership_id else None
    if membership is None:
        logger.warning(f"Invitation skipped: membership {membership_id} not found")
        return {"sent": False, "reason": "Membership not found"}
    if not membership.invitation_email:
        logger.warning(f"Invitation skipped: membership {membership_id} has no email")
        return {"sent": False, "reason": "No invitation email"}
    if not membership.is_pending:
        logger.info(f"Invitation skipped: membership {membership_id} already accepted")
        return {"sent": False, "reason": "Already accepted"}

    send_invitation_email(membership)
    logger.info(f"Invitation sent to {membership.invitation_email}")
    return {"sent": True}


@celery.task(bind=True, base=BaseTask, name="billdesk.jobs.payment_reminders")
def payment_reminders(self, reminder_type="overdue", invoice_id=None, force=False):
    """Run the due_soon or overdue sweep, or remind one invoice ("single")."""
    from billdesk.models.invoice import Invoice
    from billdesk.services import reminder_service

    if reminder_type == "due_soon":
        return reminder_service.send_due_soon_reminders()
    if reminder_type == "overdue":
        return reminder_service.send_overdue_reminders()
    if reminder_type == "single":
        invoice = db.session.get(Invoice, invoice_id) if invoice_id else None
        if invoice is None:
            logger.warning(f"Reminder skipped: invoice {invoice_id} not found")
            return {"success": False, "message": "Invoice not found"}
        return reminder_service.send_reminder(invoice, force=force)

    logger.warning(f"Unknown reminder type: {reminder_type}")
    return {"success": False, "message": f"Unknown reminder type: {reminder_type}"}
