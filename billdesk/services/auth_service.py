"""Auth service — credentials, server-side sessions, registration, invitations.

A login is a UserSession row. Flask-Login stores only that row's opaque
token in the signed cookie; load_user_from_token() walks token -> session
-> user on each request, and deleting the row logs the browser out.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import timedelta

from flask import request, session
from flask_login import current_user, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from billdesk.extensions import db
from billdesk.models.audit import AuditEvent
from billdesk.models.membership import Membership
from billdesk.models.user import User, UserSession
from billdesk.services import account_service
from billdesk.services.sanitize import clean_text
from billdesk.services.tenant_service import SESSION_ACCOUNT_KEY
from billdesk.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
ACTIVITY_TOUCH_INTERVAL = timedelta(hours=1)


# ──────────────────────────────────────────────
# Session loading
# ──────────────────────────────────────────────

def load_user_from_token(token):
    """Resolve a session token to its user, or None.

    Age is not checked here: an expired session that the cleanup job has
    not swept yet still authenticates.
    """
    if not token:
        return None
    user_session = UserSession.query.filter_by(token=token).first()
    if user_session is None:
        return None
    user = user_session.user
    if user is None or not user.is_active:
        return None

    last_active = as_utc(user_session.last_active_at)
    if last_active is None or utcnow() - last_active > ACTIVITY_TOUCH_INTERVAL:
        user_session.touch()
        db.session.commit()

    user.session_token = token
    return user


def current_session():
    """The UserSession behind the current request, or None."""
    if not current_user.is_authenticated:
        return None
    return UserSession.query.filter_by(token=current_user.get_id()).first()


# ──────────────────────────────────────────────
# Sign in / sign out
# ──────────────────────────────────────────────

def sign_in(user, remember=False):
    """Start a new session for the user on this request.

    Whatever the cookie held before is dropped, so a pre-login session id
    can't be carried into the authenticated session. The user's first
    account becomes the current account.

    Returns the new UserSession.
    """
    session.clear()

    user_session = UserSession(
        user_id=user.id,
        ip_address=request.remote_addr,
        user_agent=(request.headers.get("User-Agent") or "")[:512] or None,
    )
    db.session.add(user_session)
    db.session.flush()

    user.session_token = user_session.token
    login_user(user, remember=remember)

    account = user.first_account()
    if account is not None:
        session[SESSION_ACCOUNT_KEY] = account.id

    logger.info(f"User {user.id} signed in from {user_session.ip_address}")
    return user_session


def sign_out():
    """Revoke the current session row and clear the cookie session."""
    if current_user.is_authenticated:
        token = current_user.get_id()
        deleted = UserSession.query.filter_by(token=token).delete()
        db.session.flush()
        logger.info(f"User {current_user.id} signed out ({deleted} session revoked)")
    logout_user()
    session.clear()


def revoke_user_sessions(user, keep_token=None):
    """Delete every session of a user except, optionally, one token."""
    query = UserSession.query.filter(UserSession.user_id == user.id)
    if keep_token:
        query = query.filter(UserSession.token != keep_token)
    count = query.delete(synchronize_session=False)
    db.session.flush()
    return count


# ──────────────────────────────────────────────
# Credentials
# ──────────────────────────────────────────────

def authenticate(email, password):
    """Check credentials.

    Returns:
        tuple: (user, error_message) — exactly one of the two is None.
    """
    email = (email or "").lower().strip()
    if not email or not password:
        return None, "Email and password are required."

    user = User.query.filter_by(email=email).first()
    if user is None or not check_password_hash(user.password_hash, password):
        return None, "Invalid email or password."
    if not user.is_active:
        return None, "Your account has been deactivated."
    return user, None


def register(email, password, full_name, account_name=None):
    """Create a user with their own trialing account (as owner).

    Returns:
        tuple: (user, errors) — errors is a dict of field -> message.
    """
    email = (email or "").lower().strip()
    full_name = clean_text(full_name)
    account_name = clean_text(account_name) or (
        f"{full_name}'s Account" if full_name else None
    )

    errors = {}
    if not email or "@" not in email:
        errors["email"] = "A valid email is required."
    elif User.query.filter_by(email=email).first():
        errors["email"] = "An account with this email already exists."
    if not password:
        errors["password"] = "Password is required."
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = (
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )
    if not full_name:
        errors["full_name"] = "Full name is required."
    if errors:
        return None, errors

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=full_name,
    )
    db.session.add(user)
    db.session.flush()

    account, account_errors = account_service.create_account(account_name, owner=user)
    if account_errors:
        db.session.rollback()
        return None, account_errors

    db.session.add(AuditEvent(
        account_id=account.id,
        actor_user_id=user.id,
        action="user.registered",
        metadata_={"email": email},
    ))
    db.session.flush()
    return user, None


# ──────────────────────────────────────────────
# Invitations
# ──────────────────────────────────────────────

def find_pending_invitation(token):
    """Look up an invitation token and check it's still usable.

    Returns:
        tuple: (membership, error_message)
    """
    if not token:
        return None, "No invitation token provided."

    membership = Membership.query.filter_by(invitation_token=token).first()
    if membership is None or not membership.is_pending:
        return None, "Invalid invitation link."
    if membership.is_invitation_expired:
        return None, "This invitation has expired."
    if membership.account is None or membership.account.is_discarded:
        return None, "Invalid invitation link."
    return membership, None


def accept_invitation(token, user):
    """Bind a pending invitation to the signed-in user.

    Returns:
        tuple: (membership, error_message)
    """
    membership, error = find_pending_invitation(token)
    if error:
        return None, error

    if membership.invitation_email != user.email.lower():
        return None, "This invitation is reserved for a different email address."

    if user.membership_for(membership.account_id) is not None:
        return None, "You are already a member of this account."

    membership.accept(user)
    db.session.add(AuditEvent(
        account_id=membership.account_id,
        actor_user_id=user.id,
        action="membership.accepted",
        metadata_={"membership_id": membership.id, "role": membership.role},
    ))
    db.session.flush()
    logger.info(f"User {user.id} joined account {membership.account_id} as {membership.role}")
    return membership, None


# ──────────────────────────────────────────────
# Session sweep
# ──────────────────────────────────────────────

def cleanup_expired_sessions(expiry_days=30, inactive_days=7):
    """Delete sessions older than expiry_days or idle longer than inactive_days.

    Commits. Returns {"deleted_count", "old_sessions", "inactive_sessions"}.
    """
    now = utcnow()
    expiry_cutoff = now - timedelta(days=expiry_days)
    inactive_cutoff = now - timedelta(days=inactive_days)

    old_sessions = UserSession.query.filter(
        UserSession.created_at < expiry_cutoff
    ).delete(synchronize_session=False)
    inactive_sessions = UserSession.query.filter(
        UserSession.last_active_at.isnot(None),
        UserSession.last_active_at < inactive_cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()

    deleted = old_sessions + inactive_sessions
    logger.info(
        f"Session cleanup removed {deleted} sessions "
        f"({old_sessions} expired, {inactive_sessions} inactive)"
    )
    return {
        "deleted_count": deleted,
        "old_sessions": old_sessions,
        "inactive_sessions": inactive_sessions,
    }
