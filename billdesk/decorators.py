"""
Custom route decorators for access control.

- account_member_required: ensures user is logged in AND is an accepted
  member of the account resolved by the tenant middleware. Sets
  g.membership for the policies.
- admin_required: ensures user is logged in AND has is_admin=True
  (platform owner).
"""

from functools import wraps

from flask import abort, g
from flask_login import current_user, login_required

from billdesk.services.tenant_service import verify_tenant_access


def account_member_required(f):
    """Require login + membership in the current account."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        # g.account_id is set by tenant middleware
        if getattr(g, "account_id", None) is None:
            abort(404)

        g.membership = verify_tenant_access(current_user, g.account_id)
        return f(*args, **kwargs)

    return decorated


def admin_required(f):
    """Require login + is_admin flag."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated
