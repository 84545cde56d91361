"""Membership policy.

The record is the target membership. Two rules hold regardless of role:
the owner row can never be edited or removed, and nobody edits their
own role. Removing one's own non-owner row is always allowed (leaving
the account).
"""

from billdesk.policies.base import ApplicationPolicy

LOWER_ROLES = ("member", "guest")


class MembershipPolicy(ApplicationPolicy):
    def _is_own(self):
        return (
            self.membership is not None
            and self.record is not None
            and self.record.id == self.membership.id
        )

    def can_index(self):
        return self.is_member()

    def can_show(self):
        return self.is_member()

    def can_create(self):
        return self._manager()

    can_invite = can_create

    def can_update(self):
        if not self._manager() or self.record.is_owner or self._is_own():
            return False
        if self.is_owner():
            return True
        return self.record.role in LOWER_ROLES

    def can_destroy(self):
        if not self.is_member() or self.record.is_owner:
            return False
        if self._is_own():
            return True
        if self.is_owner():
            return True
        return self.is_admin_or_owner() and self.record.role in LOWER_ROLES

    def can_resend_invitation(self):
        return self._manager() and self.record.is_pending

    def can_cancel_invitation(self):
        return self._manager() and self.record.is_pending
