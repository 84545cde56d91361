"""Membership service — invitations, role changes, removal.

Functions flush but do NOT commit — the caller commits and then enqueues
the invitation email (jobs.send_account_invitation) so the worker sees
the committed row.
"""

import logging
import re
import secrets

from billdesk.extensions import db
from billdesk.models.audit import AuditEvent
from billdesk.models.membership import Membership
from billdesk.models.user import User
from billdesk.utils import utcnow

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ASSIGNABLE_ROLES = ("admin", "member", "guest")


def _audit(membership, actor, action, metadata=None):
    db.session.add(AuditEvent(
        account_id=membership.account_id,
        actor_user_id=actor.id if actor else None,
        action=action,
        metadata_={"membership_id": membership.id, **(metadata or {})},
    ))


def assignable_roles(actor_membership):
    """Roles the actor may hand out: owners grant admin, admins don't."""
    if actor_membership is not None and actor_membership.is_owner:
        return list(ASSIGNABLE_ROLES)
    return ["member", "guest"]


def list_memberships(account_id):
    return (
        Membership.query
        .filter(Membership.account_id == account_id)
        .order_by(Membership.created_at.asc())
        .all()
    )


def invite_member(account, email, role, actor, actor_membership):
    """Create a pending membership for an email address.

    Returns:
        tuple: (membership, errors)
    """
    email = (email or "").lower().strip()
    errors = {}
    if not email or not EMAIL_RE.match(email):
        errors["email"] = "A valid email address is required."
    if role not in assignable_roles(actor_membership):
        errors["role"] = "Invalid role selected."
    if errors:
        return None, errors

    existing_user = User.query.filter_by(email=email).first()
    if existing_user is not None and account.memberships.filter(
        Membership.user_id == existing_user.id
    ).first():
        return None, {"email": "This user is already a member of this account."}

    if account.memberships.filter(
        Membership.invitation_email == email,
        Membership.accepted_at.is_(None),
    ).first():
        return None, {"email": "An invitation has already been sent to this email address."}

    membership = Membership.new_invitation(
        account_id=account.id, email=email, role=role, invited_by_id=actor.id
    )
    db.session.add(membership)
    db.session.flush()
    _audit(membership, actor, "membership.invited", {"email": email, "role": role})
    db.session.flush()
    logger.info(f"Invited {email} to account {account.id} as {role}")
    return membership, None


def resend_invitation(membership):
    """Refresh an expired invitation's token and clock before re-sending."""
    if not membership.is_pending:
        raise ValueError("This invitation has already been accepted.")
    if membership.is_invitation_expired:
        membership.invitation_token = secrets.token_urlsafe(32)
        membership.invited_at = utcnow()
        db.session.flush()
    return membership


def update_role(membership, role, actor, actor_membership=None):
    """Change a member's role. The owner role is never assigned here."""
    if role == "owner":
        return {"role": "Cannot assign owner role."}
    if role not in assignable_roles(actor_membership):
        return {"role": "Invalid role selected."}
    previous = membership.role
    membership.role = role
    _audit(membership, actor, "membership.role_changed", {"from": previous, "to": role})
    db.session.flush()
    return None


def remove_member(membership, actor):
    """Delete a membership row (member removal, invitation cancel, or leaving)."""
    if membership.is_owner:
        raise ValueError("Account owners cannot be removed. Transfer ownership first.")
    _audit(
        membership,
        actor,
        "membership.removed",
        {"user_id": membership.user_id, "email": membership.invitation_email},
    )
    db.session.delete(membership)
    db.session.flush()
