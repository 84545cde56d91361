from billdesk.policies.base import ApplicationPolicy


class AccountPolicy(ApplicationPolicy):
    """The record is the Account itself."""

    def is_member(self):
        if self.role is None:
            return False
        return self.record is None or self.record.id == self.membership.account_id

    def can_show(self):
        return self.is_member()

    def can_update(self):
        return self.is_member() and self.is_admin_or_owner()

    can_edit = can_update

    def can_manage_billing(self):
        return self.is_member() and self.is_owner()

    def can_destroy(self):
        return self.is_member() and self.is_owner()

    def can_transfer_ownership(self):
        return self.is_member() and self.is_owner()
