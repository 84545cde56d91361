"""Base policy and helpers.

A policy answers "may this actor do X to this record?" from three inputs:
the user, the user's membership in the current account, and the record.
Capability methods are pure: they never query or write.
"""

from flask import abort

ROLE_RANK = {"owner": 4, "admin": 3, "member": 2, "guest": 1}


class ApplicationPolicy:
    """Denies everything; subclasses grant capabilities."""

    def __init__(self, user, membership, record=None):
        self.user = user
        self.membership = membership
        self.record = record

    # --- Role helpers ---

    @property
    def role(self):
        if self.membership is None or self.membership.accepted_at is None:
            return None
        return self.membership.role

    def _rank(self):
        return ROLE_RANK.get(self.role, 0)

    def is_owner(self):
        return self.role == "owner"

    def is_admin_or_owner(self):
        return self._rank() >= ROLE_RANK["admin"]

    def is_member(self):
        """Any accepted membership whose account owns the record."""
        if self.role is None:
            return False
        if self.record is None:
            return True
        record_account = getattr(self.record, "account_id", None)
        if record_account is None:
            return True
        return record_account == self.membership.account_id

    def _manager(self):
        return self.is_member() and self.is_admin_or_owner()

    def can(self, action):
        check = getattr(self, f"can_{action}", None)
        if check is None:
            return False
        return bool(check())


def authorize(policy, action):
    """Abort with 403 unless the policy grants the action."""
    if not policy.can(action):
        abort(403)
    return policy
