# Models package: import all models here so Alembic can discover them.

from billdesk.models.account import Account, Plan  # noqa: F401
from billdesk.models.user import User, UserSession  # noqa: F401
from billdesk.models.membership import Membership  # noqa: F401
from billdesk.models.billing import BillingCustomer  # noqa: F401
from billdesk.models.stripe_event import StripeEvent  # noqa: F401
from billdesk.models.audit import AuditEvent  # noqa: F401
from billdesk.models.client import Client  # noqa: F401
from billdesk.models.invoice import Invoice, InvoiceLineItem  # noqa: F401
from billdesk.models.estimate import Estimate, EstimateLineItem  # noqa: F401
