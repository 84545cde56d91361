"""Cache warmup — pre-fills Flask-Caching with frequently read summaries.

Only plain dicts and counts go into the cache, never ORM instances.
"""

import logging
from datetime import timedelta

from billdesk.extensions import cache
from billdesk.models.account import Account
from billdesk.models.user import User
from billdesk.utils import utcnow

logger = logging.getLogger(__name__)

WARMUP_SCOPES = ("all", "accounts", "users", "counts")
RECORD_TTL = 3600
COUNT_TTL = 900
RECENT_ACCOUNTS_LIMIT = 100
RECENT_USERS_LIMIT = 500
RECENT_USER_DAYS = 7
ACTIVE_USER_DAYS = 30


def account_cache_key(account_id):
    return f"accounts/{account_id}"


def user_cache_key(user_id):
    return f"users/{user_id}"


def _account_summary(account):
    return {
        "id": account.id,
        "name": account.name,
        "slug": account.slug,
        "subdomain": account.subdomain,
        "subscription_status": account.subscription_status,
        "plan_id": account.plan_id,
    }


def _user_summary(user):
    return {"id": user.id, "email": user.email, "full_name": user.full_name}


def warm_accounts():
    """Cache the most recently updated accounts. Returns how many were cached."""
    warmed = 0
    accounts = (
        Account.kept()
        .order_by(Account.updated_at.desc())
        .limit(RECENT_ACCOUNTS_LIMIT)
        .all()
    )
    for account in accounts:
        try:
            cache.set(account_cache_key(account.id), _account_summary(account), timeout=RECORD_TTL)
            warmed += 1
        except Exception as e:
            logger.error(f"Cache warmup failed for account {account.id}: {e}")
    logger.info(f"Warmed {warmed} accounts")
    return warmed


def warm_users():
    warmed = 0
    users = (
        User.query
        .filter(User.updated_at > utcnow() - timedelta(days=RECENT_USER_DAYS))
        .order_by(User.updated_at.desc())
        .limit(RECENT_USERS_LIMIT)
        .all()
    )
    for user in users:
        try:
            cache.set(user_cache_key(user.id), _user_summary(user), timeout=RECORD_TTL)
            warmed += 1
        except Exception as e:
            logger.error(f"Cache warmup failed for user {user.id}: {e}")
    logger.info(f"Warmed {warmed} users")
    return warmed


def warm_counts():
    counts = {
        "total_users": User.query.count(),
        "active_users": User.query.filter(
            User.updated_at > utcnow() - timedelta(days=ACTIVE_USER_DAYS)
        ).count(),
        "total_accounts": Account.kept().count(),
    }
    cache.set("counts/users/total", counts["total_users"], timeout=COUNT_TTL)
    cache.set("counts/users/active", counts["active_users"], timeout=COUNT_TTL)
    cache.set("counts/accounts/total", counts["total_accounts"], timeout=COUNT_TTL)
    logger.info(f"Warmed counts: {counts}")
    return counts


def warmup(scope="all"):
    """Run the warmers for a scope. An unknown scope is logged and ignored."""
    if scope not in WARMUP_SCOPES:
        logger.warning(f"Unknown cache warmup scope: {scope}")
        return {"scope": scope, "warmed": False}

    result = {"scope": scope, "warmed": True}
    if scope in ("all", "accounts"):
        result["accounts"] = warm_accounts()
    if scope in ("all", "users"):
        result["users"] = warm_users()
    if scope in ("all", "counts"):
        result["counts"] = warm_counts()
    return result
