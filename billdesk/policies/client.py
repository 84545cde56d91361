from billdesk.policies.base import ApplicationPolicy


class ClientPolicy(ApplicationPolicy):
    def can_index(self):
        return self.is_member()

    def can_show(self):
        return self.is_member()

    def can_invoices(self):
        return self.is_member()

    def can_create(self):
        return self._manager()

    def can_update(self):
        return self._manager()

    def can_destroy(self):
        return self._manager()
