"""Members blueprint — /members

Team management for the current account: listing, invitations, role
changes, removal and leaving. Invitation emails go out through the
send_account_invitation job once the membership row is committed.
"""

import logging

from flask import Blueprint, g, jsonify, session
from flask_login import current_user

from billdesk import jobs
from billdesk.decorators import account_member_required
from billdesk.extensions import db
from billdesk.models.membership import Membership
from billdesk.policies import MembershipPolicy, authorize
from billdesk.services import membership_service, tenant_service
from billdesk.services.tenant_service import get_scoped_or_404
from billdesk.utils import conflict, json_body, unprocessable

logger = logging.getLogger(__name__)

members_bp = Blueprint("members", __name__, url_prefix="/members")


def _membership_payload(membership):
    user = membership.user
    return {
        "id": membership.id,
        "role": membership.role,
        "user_id": membership.user_id,
        "email": user.email if user else membership.invitation_email,
        "full_name": user.full_name if user else None,
        "pending": membership.is_pending,
        "invitation_expired": membership.is_invitation_expired,
        "invited_at": membership.invited_at.isoformat() if membership.invited_at else None,
        "accepted_at": membership.accepted_at.isoformat() if membership.accepted_at else None,
    }


def _policy(record=None):
    return MembershipPolicy(current_user, g.membership, record)


def _enqueue_invitation(membership):
    try:
        jobs.send_account_invitation.delay(membership.id)
    except Exception as e:
        # The row is committed; the invitation can be resent from the UI.
        logger.error(f"Could not enqueue invitation {membership.id}: {e}", exc_info=True)


# ──────────────────────────────────────────────
# GET /members
# ──────────────────────────────────────────────

@members_bp.route("", methods=["GET"])
@account_member_required
def index():
    authorize(_policy(), "index")
    memberships = membership_service.list_memberships(g.account_id)
    return jsonify(
        ok=True,
        members=[_membership_payload(m) for m in memberships],
        assignable_roles=membership_service.assignable_roles(g.membership),
    )


# ──────────────────────────────────────────────
# POST /members (invite)
# ──────────────────────────────────────────────

@members_bp.route("", methods=["POST"])
@account_member_required
def invite():
    authorize(_policy(), "invite")
    data = json_body()
    membership, errors = membership_service.invite_member(
        g.account,
        email=data.get("email"),
        role=data.get("role", "member"),
        actor=current_user,
        actor_membership=g.membership,
    )
    if errors:
        return unprocessable(errors)
    db.session.commit()
    _enqueue_invitation(membership)
    return jsonify(ok=True, member=_membership_payload(membership)), 201


# ──────────────────────────────────────────────
# DELETE /members/leave
# ──────────────────────────────────────────────

@members_bp.route("/leave", methods=["DELETE"])
@account_member_required
def leave():
    """Leave the current account. Owners must transfer ownership first."""
    membership = g.membership
    if membership.is_owner:
        return jsonify(
            ok=False, error="Account owners cannot leave. Transfer ownership first."
        ), 409
    authorize(_policy(membership), "destroy")
    membership_service.remove_member(membership, actor=current_user)
    db.session.commit()

    remaining = current_user.first_account()
    if remaining is not None:
        session[tenant_service.SESSION_ACCOUNT_KEY] = remaining.id
    else:
        session.pop(tenant_service.SESSION_ACCOUNT_KEY, None)
    return jsonify(ok=True, current_account_id=remaining.id if remaining else None)


# ──────────────────────────────────────────────
# PATCH /members/<id>
# ──────────────────────────────────────────────

@members_bp.route("/<membership_id>", methods=["PATCH"])
@account_member_required
def update(membership_id):
    membership = get_scoped_or_404(Membership, g.account_id, membership_id)
    authorize(_policy(membership), "update")
    errors = membership_service.update_role(
        membership,
        json_body().get("role"),
        actor=current_user,
        actor_membership=g.membership,
    )
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, member=_membership_payload(membership))


# ──────────────────────────────────────────────
# DELETE /members/<id>
# ──────────────────────────────────────────────

@members_bp.route("/<membership_id>", methods=["DELETE"])
@account_member_required
def destroy(membership_id):
    """Remove a member, or cancel a pending invitation."""
    membership = get_scoped_or_404(Membership, g.account_id, membership_id)
    action = "cancel_invitation" if membership.is_pending else "destroy"
    authorize(_policy(membership), action)
    membership_service.remove_member(membership, actor=current_user)
    db.session.commit()
    return jsonify(ok=True)


# ──────────────────────────────────────────────
# POST /members/<id>/resend
# ──────────────────────────────────────────────

@members_bp.route("/<membership_id>/resend", methods=["POST"])
@account_member_required
def resend(membership_id):
    membership = get_scoped_or_404(Membership, g.account_id, membership_id)
    authorize(_policy(membership), "resend_invitation")
    membership_service.resend_invitation(membership)
    db.session.commit()
    _enqueue_invitation(membership)
    return jsonify(ok=True, member=_membership_payload(membership))


@members_bp.errorhandler(ValueError)
def _invalid_state(e):
    return conflict(str(e))
