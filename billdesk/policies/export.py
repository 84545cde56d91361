from billdesk.policies.base import ApplicationPolicy


class ExportPolicy(ApplicationPolicy):
    """Headless: no record. Guests may not export account data."""

    def can_new(self):
        return self.role is not None and self.role != "guest"

    def can_create(self):
        return self.can_new()
