"""Account service — creation, settings updates, soft deletion.

Functions flush but do NOT commit — the caller commits.
"""

import logging
import re

from billdesk.extensions import db
from billdesk.models.account import Account, Plan
from billdesk.models.audit import AuditEvent
from billdesk.models.membership import Membership
from billdesk.services.sanitize import clean_text
from billdesk.utils import utcnow

logger = logging.getLogger(__name__)


def slugify(value):
    """Convert a string to a URL-safe slug: lowercase, only a-z 0-9 and hyphens."""
    value = (value or "").lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)   # strip non-alphanumeric
    value = re.sub(r"[\s-]+", "-", value)          # collapse whitespace/hyphens
    return value.strip("-")


def unique_slug(name, exclude_id=None):
    """Slug for the name, suffixed -2, -3, ... until unused."""
    base = slugify(name) or "account"
    candidate = base
    suffix = 2
    while True:
        query = Account.query.filter(Account.slug == candidate)
        if exclude_id:
            query = query.filter(Account.id != exclude_id)
        if query.first() is None:
            return candidate
        candidate = f"{base}-{suffix}"
        suffix += 1


def validate_subdomain(subdomain, exclude_id=None):
    """Return an error message for an unusable subdomain, else None."""
    if not Account.SUBDOMAIN_RE.match(subdomain or ""):
        return "Subdomain may only contain lowercase letters and numbers."
    if len(subdomain) > 63:
        return "Subdomain is too long."
    if subdomain in Account.RESERVED_SUBDOMAINS:
        return "This subdomain is reserved."
    query = Account.query.filter(Account.subdomain == subdomain)
    if exclude_id:
        query = query.filter(Account.id != exclude_id)
    if query.first() is not None:
        return "This subdomain is already taken."
    return None


def create_account(name, owner, subdomain=None, plan=None):
    """Create an account in trial with `owner` as its single owner.

    Returns:
        tuple: (account, errors)
    """
    name = clean_text(name)
    errors = {}
    if not name:
        errors["name"] = "Account name is required."
    if subdomain:
        subdomain = subdomain.lower().strip()
        error = validate_subdomain(subdomain)
        if error:
            errors["subdomain"] = error
    if errors:
        return None, errors

    if plan is None:
        plan = Plan.free_plan()

    account = Account(
        name=name,
        slug=unique_slug(name),
        subdomain=subdomain or None,
        subscription_status="trialing",
        plan_id=plan.id if plan else None,
        settings={},
    )
    db.session.add(account)
    db.session.flush()

    db.session.add(Membership(
        user_id=owner.id,
        account_id=account.id,
        role="owner",
        accepted_at=utcnow(),
    ))
    db.session.flush()
    logger.info(f"Created account {account.id} for user {owner.id}")
    return account, None


def update_account(account, data, actor):
    """Apply editable settings (name, subdomain, settings dict).

    Returns:
        dict of field errors, or None on success.
    """
    errors = {}
    changes = {}

    if "name" in data:
        name = clean_text(data.get("name"))
        if not name:
            errors["name"] = "Account name is required."
        elif name != account.name:
            changes["name"] = name

    if "subdomain" in data:
        subdomain = (data.get("subdomain") or "").lower().strip() or None
        if subdomain and subdomain != account.subdomain:
            error = validate_subdomain(subdomain, exclude_id=account.id)
            if error:
                errors["subdomain"] = error
            else:
                changes["subdomain"] = subdomain
        elif subdomain is None and account.subdomain is not None:
            changes["subdomain"] = None

    if "settings" in data:
        if not isinstance(data.get("settings"), dict):
            errors["settings"] = "Settings must be an object."
        else:
            merged = dict(account.settings or {})
            merged.update(data["settings"])
            changes["settings"] = merged

    if errors:
        return errors

    for field, value in changes.items():
        setattr(account, field, value)

    if changes:
        db.session.add(AuditEvent(
            account_id=account.id,
            actor_user_id=actor.id,
            action="account.updated",
            metadata_={"fields": sorted(changes)},
        ))
    db.session.flush()
    return None


def discard_account(account, actor):
    """Soft-delete the account; it stops resolving as a tenant."""
    account.discard()
    db.session.add(AuditEvent(
        account_id=account.id,
        actor_user_id=actor.id,
        action="account.discarded",
        metadata_={},
    ))
    db.session.flush()
    logger.info(f"Account {account.id} discarded by user {actor.id}")


def transfer_ownership(account, new_owner_membership, actor):
    """Hand the owner role to another accepted member; the old owner becomes admin.

    Raises:
        ValueError: If the target is not an accepted member of the account.
    """
    if (
        new_owner_membership.account_id != account.id
        or new_owner_membership.user_id is None
        or new_owner_membership.accepted_at is None
    ):
        raise ValueError("Ownership can only be transferred to an accepted member.")
    if new_owner_membership.is_owner:
        raise ValueError("This member already owns the account.")

    current_owner = account.owner_membership
    if current_owner is not None:
        current_owner.role = "admin"
        # Release the single-owner index before promoting.
        db.session.flush()
    new_owner_membership.role = "owner"
    db.session.add(AuditEvent(
        account_id=account.id,
        actor_user_id=actor.id,
        action="account.ownership_transferred",
        metadata_={"to_membership_id": new_owner_membership.id},
    ))
    db.session.flush()
