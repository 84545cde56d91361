"""Export service — a user's own data as JSON-ready structures.

Three export types:
  - users:         the requesting user's profile
  - accounts:      the user's memberships and their accounts
  - activity_logs: audit events the user performed (latest 1000)
"""

import logging

from billdesk.extensions import db
from billdesk.models.audit import AuditEvent
from billdesk.models.user import User

logger = logging.getLogger(__name__)

SUPPORTED_EXPORT_TYPES = ("users", "accounts", "activity_logs")
ACTIVITY_LOG_LIMIT = 1000


def _iso(value):
    return value.isoformat() if value else None


def _export_users(user):
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def _export_accounts(user):
    return [
        {
            "account_id": m.account_id,
            "account_name": m.account.name if m.account else None,
            "role": m.role,
            "joined_at": _iso(m.accepted_at or m.created_at),
        }
        for m in user.memberships
    ]


def _export_activity_logs(user):
    events = (
        AuditEvent.query
        .filter(AuditEvent.actor_user_id == user.id)
        .order_by(AuditEvent.created_at.desc())
        .limit(ACTIVITY_LOG_LIMIT)
        .all()
    )
    return [
        {
            "action": e.action,
            "account_id": e.account_id,
            "metadata": e.metadata_ or {},
            "created_at": _iso(e.created_at),
        }
        for e in events
    ]


EXPORTERS = {
    "users": _export_users,
    "accounts": _export_accounts,
    "activity_logs": _export_activity_logs,
}


def export_data(user_id, export_type):
    """Build an export for a user.

    Returns:
        dict: {"success": True, "data": ..., "export_type": ...} or
              {"success": False, "error": "..."}. Never raises for a missing
              user or an unsupported type.
    """
    user = db.session.get(User, user_id) if user_id else None
    if user is None:
        logger.warning(f"Export skipped: user {user_id} not found")
        return {"success": False, "error": "User not found"}

    exporter = EXPORTERS.get(export_type)
    if exporter is None:
        logger.warning(f"Export skipped: invalid export type {export_type!r}")
        return {"success": False, "error": "Invalid export type"}

    data = exporter(user)
    logger.info(f"Generated {export_type} export for user {user_id}")
    return {"success": True, "data": data, "export_type": export_type}
