"""Auth blueprint — /auth/*

Registration, login, logout, account switching and invitation
acceptance. JSON in, JSON out; the session cookie carries only the
UserSession token and the current account id.
"""

import logging

from flask import Blueprint, abort, jsonify, session
from flask_login import current_user, login_required
from flask_wtf.csrf import generate_csrf

from billdesk.extensions import db, limiter
from billdesk.models.user import UserSession
from billdesk.services import auth_service, tenant_service
from billdesk.utils import json_body, unprocessable

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _user_payload(user):
    current_account_id = session.get(tenant_service.SESSION_ACCOUNT_KEY)
    accounts = []
    for membership in user.memberships:
        if membership.accepted_at is None or membership.account is None:
            continue
        if membership.account.is_discarded:
            continue
        accounts.append({
            "id": membership.account_id,
            "name": membership.account.name,
            "subdomain": membership.account.subdomain,
            "role": membership.role,
        })
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "is_admin": bool(user.is_admin),
        "current_account_id": current_account_id,
        "accounts": accounts,
    }


# ──────────────────────────────────────────────
# GET /auth/csrf
# ──────────────────────────────────────────────

@auth_bp.route("/csrf")
def csrf_token():
    """Hand the CSRF token to API clients (send it back as X-CSRFToken)."""
    return jsonify(csrf_token=generate_csrf())


# ──────────────────────────────────────────────
# POST /auth/register
# ──────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
@limiter.limit("10 per minute")
def register():
    """Create a user with a trialing account they own, then sign them in."""
    if current_user.is_authenticated:
        return jsonify(ok=False, error="Already signed in."), 400

    data = json_body()
    user, errors = auth_service.register(
        email=data.get("email"),
        password=data.get("password"),
        full_name=data.get("full_name"),
        account_name=data.get("account_name"),
    )
    if errors:
        return unprocessable(errors)

    auth_service.sign_in(user)
    db.session.commit()
    return jsonify(ok=True, user=_user_payload(user)), 201


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = json_body()
    user, error = auth_service.authenticate(data.get("email"), data.get("password"))
    if error:
        logger.info(f"Failed login for {data.get('email')!r}")
        return jsonify(ok=False, error=error), 401

    auth_service.sign_in(user, remember=bool(data.get("remember")))
    db.session.commit()
    return jsonify(ok=True, user=_user_payload(user))


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    auth_service.sign_out()
    db.session.commit()
    return jsonify(ok=True)


# ──────────────────────────────────────────────
# GET /auth/me
# ──────────────────────────────────────────────

@auth_bp.route("/me")
@login_required
def me():
    return jsonify(ok=True, user=_user_payload(current_user))


# ──────────────────────────────────────────────
# GET /auth/sessions, DELETE /auth/sessions/<id>
# ──────────────────────────────────────────────

@auth_bp.route("/sessions")
@login_required
def list_sessions():
    """The user's active sessions, newest activity first."""
    current_token = current_user.get_id()
    sessions = current_user.sessions.order_by(
        UserSession.last_active_at.desc()
    ).all()
    return jsonify(ok=True, sessions=[
        {
            "id": s.id,
            "ip_address": s.ip_address,
            "device": s.device_info,
            "browser": s.browser_info,
            "last_active_at": s.last_active_at.isoformat() if s.last_active_at else None,
            "current": s.token == current_token,
        }
        for s in sessions
    ])


@auth_bp.route("/sessions/<session_id>", methods=["DELETE"])
@login_required
def revoke_session(session_id):
    user_session = current_user.sessions.filter_by(id=session_id).first()
    if user_session is None:
        abort(404)
    db.session.delete(user_session)
    db.session.commit()
    return jsonify(ok=True)


# ──────────────────────────────────────────────
# POST /auth/accounts/<account_id>/switch
# ──────────────────────────────────────────────

@auth_bp.route("/accounts/<account_id>/switch", methods=["POST"])
@login_required
def switch_account(account_id):
    """Make another of the user's accounts current. 403 for non-members."""
    account = tenant_service.find_account_by_id(account_id)
    tenant_service.set_current_account(current_user, account)
    return jsonify(ok=True, current_account_id=account.id)


# ──────────────────────────────────────────────
# GET/POST /auth/invitations/<token>/accept
# ──────────────────────────────────────────────

@auth_bp.route("/invitations/<token>/accept", methods=["GET"])
def show_invitation(token):
    membership, error = auth_service.find_pending_invitation(token)
    if error:
        return jsonify(ok=False, error=error), 404
    return jsonify(
        ok=True,
        invitation={
            "account_name": membership.account.name,
            "email": membership.invitation_email,
            "role": membership.role,
        },
    )


@auth_bp.route("/invitations/<token>/accept", methods=["POST"])
@login_required
def accept_invitation(token):
    membership, error = auth_service.accept_invitation(token, current_user)
    if error:
        return jsonify(ok=False, error=error), 422
    db.session.commit()
    tenant_service.set_current_account(current_user, membership.account)
    return jsonify(ok=True, account_id=membership.account_id, role=membership.role)
