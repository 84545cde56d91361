"""Invoice and estimate policies.

Any member may read; admins and owners may write, subject to the
document's state (a paid invoice is frozen, only drafts can be sent or
deleted).
"""

from billdesk.policies.base import ApplicationPolicy


class InvoicePolicy(ApplicationPolicy):
    def can_index(self):
        return self.is_member()

    def can_show(self):
        return self.is_member()

    def can_preview(self):
        return self.is_member()

    def can_download(self):
        return self.is_member()

    def can_create(self):
        return self._manager()

    def can_update(self):
        return self._manager() and not self.record.is_paid

    def can_destroy(self):
        return self._manager() and self.record.is_draft

    def can_send_invoice(self):
        return self._manager() and self.record.is_draft

    def can_mark_paid(self):
        return self._manager() and self.record.is_payable

    def can_mark_cancelled(self):
        return self._manager() and not self.record.is_paid


class EstimatePolicy(ApplicationPolicy):
    def can_index(self):
        return self.is_member()

    def can_show(self):
        return self.is_member()

    def can_download(self):
        return self.is_member()

    def can_create(self):
        return self._manager()

    def can_update(self):
        return self._manager() and not self.record.is_converted

    def can_destroy(self):
        return self._manager() and self.record.is_draft

    def can_send_estimate(self):
        return self._manager() and self.record.is_draft

    def can_accept(self):
        return self._manager() and self.record.status in ("sent", "viewed")

    can_decline = can_accept

    def can_convert(self):
        return self._manager() and self.record.can_convert
