"""Tenant service — account resolution and tenant-scoped queries.

Every read of tenant-owned rows (clients, invoices, estimates, memberships)
goes through scoped() / get_scoped(). With no resolved tenant these return
nothing at all, so a missing account can never widen a query to every
account's data.
"""

import logging

from flask import abort, current_app, session
from sqlalchemy import false
from werkzeug.exceptions import Forbidden

from billdesk.extensions import db
from billdesk.models.account import Account

logger = logging.getLogger(__name__)

SESSION_ACCOUNT_KEY = "current_account_id"


class TenantAccessError(Forbidden):
    """The user is not a member of the requested account."""

    description = "You do not have access to this account."


# ──────────────────────────────────────────────
# Resolution
# ──────────────────────────────────────────────

def subdomain_from_host(host, app_domain):
    """Extract the account label from a request host.

    "acme.billdesk.app:443" with app_domain "billdesk.app" -> "acme".
    Returns None for the bare domain, hosts outside app_domain, and
    configured default subdomains such as "www".
    """
    if not host or not app_domain:
        return None
    host = host.split(":", 1)[0].lower().strip(".")
    app_domain = app_domain.lower().strip(".")
    suffix = "." + app_domain
    if not host.endswith(suffix):
        return None
    label = host[: -len(suffix)]
    if not label or label in current_app.config.get("DEFAULT_SUBDOMAINS", ("www",)):
        return None
    return label


def find_account_by_subdomain(subdomain):
    """Exact-match lookup; no prefix or case-folding beyond lowercase hosts."""
    return Account.kept().filter(Account.subdomain == subdomain).first()


def find_account_by_id(account_id):
    if not account_id:
        return None
    return Account.kept().filter(Account.id == account_id).first()


def resolve_account(host):
    """Resolve the current account from the host, then the session.

    A request that names a subdomain is resolved from it alone: an unknown
    subdomain yields None rather than falling back to the session.
    """
    subdomain = subdomain_from_host(host, current_app.config.get("APP_DOMAIN"))
    if subdomain:
        account = find_account_by_subdomain(subdomain)
        if account is None:
            logger.info(f"No account for subdomain '{subdomain}'")
        return account
    return find_account_by_id(session.get(SESSION_ACCOUNT_KEY))


# ──────────────────────────────────────────────
# Membership checks & switching
# ──────────────────────────────────────────────

def verify_tenant_access(user, account_id):
    """Return the user's accepted membership in the account or raise 403."""
    membership = None
    if user is not None and getattr(user, "is_authenticated", False):
        membership = user.membership_for(account_id)
    if membership is None:
        raise TenantAccessError()
    return membership


def set_current_account(user, account):
    """Persist an account switch in the session after a membership check."""
    if account is None or account.is_discarded:
        raise TenantAccessError()
    verify_tenant_access(user, account.id)
    session[SESSION_ACCOUNT_KEY] = account.id
    logger.info(f"User {user.id} switched to account {account.id}")
    return account


# ──────────────────────────────────────────────
# Scoped queries
# ──────────────────────────────────────────────

def scoped(model, account_id):
    """Query over the model's rows in one account; empty without an account."""
    query = model.query
    if account_id is None:
        return query.filter(false())
    return query.filter(model.account_id == account_id)


def get_scoped(model, account_id, record_id):
    """One tenant-owned record by id, or None when it belongs elsewhere."""
    if account_id is None or not record_id:
        return None
    return scoped(model, account_id).filter(model.id == record_id).first()


def get_scoped_or_404(model, account_id, record_id):
    record = get_scoped(model, account_id, record_id)
    if record is None:
        abort(404)
    return record


def account_ids_for(user):
    """Ids of the non-discarded accounts the user has joined."""
    from billdesk.models.membership import Membership

    rows = (
        db.session.query(Membership.account_id)
        .join(Account, Account.id == Membership.account_id)
        .filter(
            Membership.user_id == user.id,
            Membership.accepted_at.isnot(None),
            Account.discarded_at.is_(None),
        )
        .all()
    )
    return [row[0] for row in rows]
