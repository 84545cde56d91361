"""Tenant middleware — resolves the current account for every request.

Sets g.account and g.account_id (both None when nothing resolves).

Resolution order:
    1. Subdomain of the request host under APP_DOMAIN (exact match,
       "www" and the bare domain are ignored). A request on an unknown
       subdomain resolves to no account.
    2. session["current_account_id"], set at sign-in or by an explicit
       account switch.

Resolution never checks membership; views do that via the membership
helpers in decorators.py before touching tenant data.
"""

from flask import g, request

from billdesk.services.tenant_service import resolve_account


def resolve_tenant():
    """Before-request hook. Skips static files and Stripe webhooks."""
    g.account = None
    g.account_id = None

    path = request.path
    if path.startswith(("/static/", "/stripe/")):
        return

    account = resolve_account(request.host)
    if account is not None:
        g.account = account
        g.account_id = account.id


def init_tenant_middleware(app):
    """Register the tenant resolver as a before_request hook."""
    app.before_request(resolve_tenant)
