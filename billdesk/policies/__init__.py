"""Authorization policies, one class per resource."""

from billdesk.policies.base import ApplicationPolicy, authorize  # noqa: F401
from billdesk.policies.account import AccountPolicy  # noqa: F401
from billdesk.policies.client import ClientPolicy  # noqa: F401
from billdesk.policies.invoice import EstimatePolicy, InvoicePolicy  # noqa: F401
from billdesk.policies.membership import MembershipPolicy  # noqa: F401
from billdesk.policies.export import ExportPolicy  # noqa: F401
