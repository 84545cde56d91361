"""Account blueprint — /account

The current tenant's settings, soft deletion and ownership transfer.
"""

import logging

from flask import Blueprint, g, jsonify, session
from flask_login import current_user

from billdesk.decorators import account_member_required
from billdesk.extensions import db
from billdesk.models.membership import Membership
from billdesk.policies import AccountPolicy, authorize
from billdesk.services import account_service, tenant_service
from billdesk.services.tenant_service import get_scoped
from billdesk.utils import json_body, unprocessable

logger = logging.getLogger(__name__)

account_bp = Blueprint("account", __name__, url_prefix="/account")


def _account_payload(account):
    plan = account.plan
    return {
        "id": account.id,
        "name": account.name,
        "slug": account.slug,
        "subdomain": account.subdomain,
        "subscription_status": account.subscription_status,
        "is_active": account.is_active,
        "trial_ends_at": account.trial_ends_at.isoformat() if account.trial_ends_at else None,
        "days_remaining_in_trial": account.days_remaining_in_trial,
        "plan": {
            "id": plan.id,
            "name": plan.name,
            "price_cents": plan.price_cents,
            "interval": plan.interval,
            "features": plan.features or [],
        } if plan else None,
        "settings": account.settings or {},
    }


def _policy():
    return AccountPolicy(current_user, g.membership, g.account)


# ──────────────────────────────────────────────
# GET /account
# ──────────────────────────────────────────────

@account_bp.route("", methods=["GET"])
@account_member_required
def show():
    authorize(_policy(), "show")
    return jsonify(ok=True, account=_account_payload(g.account), role=g.membership.role)


# ──────────────────────────────────────────────
# PATCH /account
# ──────────────────────────────────────────────

@account_bp.route("", methods=["PATCH"])
@account_member_required
def update():
    authorize(_policy(), "update")
    errors = account_service.update_account(g.account, json_body(), actor=current_user)
    if errors:
        return unprocessable(errors)
    db.session.commit()
    return jsonify(ok=True, account=_account_payload(g.account))


# ──────────────────────────────────────────────
# DELETE /account
# ──────────────────────────────────────────────

@account_bp.route("", methods=["DELETE"])
@account_member_required
def destroy():
    """Soft-delete the account. Owner only; the tenant stops resolving."""
    authorize(_policy(), "destroy")
    account_service.discard_account(g.account, actor=current_user)
    db.session.commit()

    session.pop(tenant_service.SESSION_ACCOUNT_KEY, None)
    return jsonify(ok=True)


# ──────────────────────────────────────────────
# POST /account/transfer-ownership
# ──────────────────────────────────────────────

@account_bp.route("/transfer-ownership", methods=["POST"])
@account_member_required
def transfer_ownership():
    authorize(_policy(), "transfer_ownership")
    target = get_scoped(Membership, g.account_id, json_body().get("membership_id"))
    if target is None:
        return unprocessable({"membership_id": "Member not found."})
    try:
        account_service.transfer_ownership(g.account, target, actor=current_user)
    except ValueError as e:
        return unprocessable({"membership_id": str(e)})
    db.session.commit()
    logger.info(f"Account {g.account_id} ownership moved to membership {target.id}")
    return jsonify(ok=True)
