"""Metrics service — revenue, customer and payment-health analytics.

Pure reads over current Account/Plan state. Nothing is cached or stored
here: every call recomputes from the database (the owner metrics views
may cache the rendered JSON).

Conventions:
- Money is in major currency units (plan price_cents / 100), yearly plans
  normalized to a month.
- Ratios and percentages are rounded to 2 places.
- A zero denominator yields 0.0, never an error or NaN.
- Periods are "the last N days" counted back from `now`.

Historical MRR (mrr_at) re-filters accounts by creation date and
attributes each to its *current* plan; plan changes are not tracked.
"""

import logging
from datetime import timedelta

from billdesk.extensions import db
from billdesk.models.account import Account, Plan
from billdesk.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30
PAST_DUE_CHURN_FACTOR = 0.15
ATTENTION_AFTER_DAYS = 3
TRIAL_EXPIRY_WINDOW_DAYS = 7


def _round(value):
    return round(float(value), 2)


def _percentage(numerator, denominator):
    if not denominator:
        return 0.0
    return _round(numerator / denominator * 100)


def _monthly_sum(accounts):
    return _round(sum(a.plan.monthly_amount for a in accounts if a.plan is not None))


class _MetricsBase:
    def __init__(self, now=None):
        self.now = now or utcnow()

    def _ago(self, days):
        return self.now - timedelta(days=days)

    def _accounts(self):
        return Account.kept()

    def _paid_accounts(self, statuses):
        """Accounts in the given statuses on a paid plan, plans eager-loaded."""
        return (
            self._accounts()
            .join(Plan, Account.plan_id == Plan.id)
            .filter(Account.subscription_status.in_(statuses), Plan.price_cents > 0)
            .options(db.contains_eager(Account.plan))
        )


# ──────────────────────────────────────────────
# Revenue
# ──────────────────────────────────────────────

class RevenueMetrics(_MetricsBase):
    """MRR/ARR and their movement."""

    ACTIVE_STATUSES = ("active", "trialing")

    def mrr(self):
        return _monthly_sum(self._paid_accounts(self.ACTIVE_STATUSES).all())

    def arr(self):
        return _round(self.mrr() * 12)

    def mrr_by_plan(self):
        totals = {}
        for account in self._paid_accounts(self.ACTIVE_STATUSES).all():
            name = account.plan.name
            totals[name] = totals.get(name, 0.0) + account.plan.monthly_amount
        return {name: _round(amount) for name, amount in totals.items()}

    def new_mrr(self, days=DEFAULT_PERIOD_DAYS):
        accounts = (
            self._paid_accounts(self.ACTIVE_STATUSES)
            .filter(Account.created_at >= self._ago(days))
            .all()
        )
        return _monthly_sum(accounts)

    def churned_mrr(self, days=DEFAULT_PERIOD_DAYS):
        since = self._ago(days)
        accounts = (
            self._paid_accounts(("canceled",))
            .filter(Account.updated_at >= since, Account.created_at < since)
            .all()
        )
        return _monthly_sum(accounts)

    def expansion_mrr(self, days=DEFAULT_PERIOD_DAYS):
        # Needs plan-change history, which is not recorded.
        return 0.0

    def contraction_mrr(self, days=DEFAULT_PERIOD_DAYS):
        return 0.0

    def net_mrr_movement(self, days=DEFAULT_PERIOD_DAYS):
        return _round(
            self.new_mrr(days)
            + self.expansion_mrr(days)
            - self.churned_mrr(days)
            - self.contraction_mrr(days)
        )

    def mrr_at(self, moment):
        accounts = (
            self._paid_accounts(self.ACTIVE_STATUSES)
            .filter(Account.created_at <= moment)
            .all()
        )
        return _monthly_sum(accounts)

    def mrr_growth_rate(self, days=DEFAULT_PERIOD_DAYS):
        previous = self.mrr_at(self._ago(days))
        if not previous:
            return 0.0
        return _round((self.mrr() - previous) / previous * 100)

    def to_dict(self, days=DEFAULT_PERIOD_DAYS):
        return {
            "mrr": self.mrr(),
            "arr": self.arr(),
            "mrr_by_plan": self.mrr_by_plan(),
            "new_mrr": self.new_mrr(days),
            "churned_mrr": self.churned_mrr(days),
            "expansion_mrr": self.expansion_mrr(days),
            "contraction_mrr": self.contraction_mrr(days),
            "net_mrr_movement": self.net_mrr_movement(days),
            "mrr_growth_rate": self.mrr_growth_rate(days),
        }


# ──────────────────────────────────────────────
# Customers
# ──────────────────────────────────────────────

class CustomerAnalytics(_MetricsBase):
    """Customer counts, churn, retention and lifetime value."""

    PAYING_STATUSES = ("active", "past_due")

    def total_customers(self):
        return self._accounts().count()

    def active_customers(self):
        return self._accounts().filter(
            Account.subscription_status.in_(self.PAYING_STATUSES)
        ).count()

    def customers_by_status(self):
        rows = (
            db.session.query(Account.subscription_status, db.func.count(Account.id))
            .filter(Account.discarded_at.is_(None))
            .group_by(Account.subscription_status)
            .all()
        )
        return {status: count for status, count in rows}

    def customers_by_plan(self):
        rows = (
            db.session.query(Plan.name, db.func.count(Account.id))
            .join(Account, Account.plan_id == Plan.id)
            .filter(Account.discarded_at.is_(None))
            .group_by(Plan.name)
            .all()
        )
        return {name: count for name, count in rows}

    def new_customers(self, days=DEFAULT_PERIOD_DAYS):
        return self._accounts().filter(Account.created_at >= self._ago(days)).count()

    def churned_customers(self, days=DEFAULT_PERIOD_DAYS):
        since = self._ago(days)
        return self._accounts().filter(
            Account.subscription_status == "canceled",
            Account.updated_at >= since,
            Account.created_at < since,
        ).count()

    def churn_rate(self, days=DEFAULT_PERIOD_DAYS):
        """Churned in period / accounts that existed before it and weren't canceled.

        An account canceled during the period still counts in the
        denominator only if it is no longer canceled, so the denominator is
        the survivors plus the churned.
        """
        since = self._ago(days)
        surviving = self._accounts().filter(
            Account.created_at < since,
            Account.subscription_status != "canceled",
        ).count()
        churned = self.churned_customers(days)
        return _percentage(churned, surviving + churned)

    def retention_rate(self, days=DEFAULT_PERIOD_DAYS):
        return _round(100.0 - self.churn_rate(days))

    def arpu(self):
        active = self.active_customers()
        if not active:
            return 0.0
        return _round(RevenueMetrics(self.now).mrr() / active)

    def ltv(self, days=DEFAULT_PERIOD_DAYS):
        monthly_churn = self.churn_rate(days) / 100.0
        if monthly_churn <= 0:
            return 0.0
        return _round(self.arpu() / monthly_churn)

    def trial_conversion_rate(self):
        """Paying accounts whose trial has ended, over all accounts that had a trial."""
        total_trials = self._accounts().filter(Account.trial_ends_at.isnot(None)).count()
        converted = self._accounts().filter(
            Account.subscription_status.in_(self.PAYING_STATUSES),
            Account.trial_ends_at.isnot(None),
            Account.trial_ends_at < self.now,
        ).count()
        return _percentage(converted, total_trials)

    def net_customer_growth(self, days=DEFAULT_PERIOD_DAYS):
        return self.new_customers(days) - self.churned_customers(days)

    def trialing_customers(self):
        return self._accounts().filter(Account.subscription_status == "trialing").count()

    def trials_expiring_soon(self, days=TRIAL_EXPIRY_WINDOW_DAYS):
        return self._accounts().filter(
            Account.subscription_status == "trialing",
            Account.trial_ends_at >= self.now,
            Account.trial_ends_at <= self.now + timedelta(days=days),
        ).count()

    def average_customer_age(self):
        """Mean account age in whole days."""
        created = [
            as_utc(row[0])
            for row in db.session.query(Account.created_at)
            .filter(Account.discarded_at.is_(None))
            .all()
            if row[0] is not None
        ]
        if not created:
            return 0
        total_seconds = sum((self.now - c).total_seconds() for c in created)
        return round(total_seconds / len(created) / 86400)

    def to_dict(self, days=DEFAULT_PERIOD_DAYS):
        return {
            "total_customers": self.total_customers(),
            "active_customers": self.active_customers(),
            "customers_by_status": self.customers_by_status(),
            "customers_by_plan": self.customers_by_plan(),
            "new_customers": self.new_customers(days),
            "churned_customers": self.churned_customers(days),
            "churn_rate": self.churn_rate(days),
            "retention_rate": self.retention_rate(days),
            "arpu": self.arpu(),
            "ltv": self.ltv(days),
            "trial_conversion_rate": self.trial_conversion_rate(),
            "net_customer_growth": self.net_customer_growth(days),
            "trialing_customers": self.trialing_customers(),
            "trials_expiring_soon": self.trials_expiring_soon(),
            "average_customer_age": self.average_customer_age(),
        }


# ──────────────────────────────────────────────
# Payment health
# ──────────────────────────────────────────────

class PaymentHealth(_MetricsBase):
    """Past-due exposure and revenue health."""

    AGE_BUCKETS = (
        ("1-7 days", 0, 7),
        ("8-14 days", 7, 14),
        ("15-30 days", 14, 30),
        ("30+ days", 30, None),
    )

    def _past_due(self):
        return self._accounts().filter(Account.subscription_status == "past_due")

    def past_due_accounts_count(self):
        return self._past_due().count()

    def past_due_percentage(self):
        total = self._accounts().filter(Account.subscription_status != "canceled").count()
        return _percentage(self.past_due_accounts_count(), total)

    def at_risk_revenue(self):
        return _monthly_sum(self._paid_accounts(("past_due",)).all())

    def failed_payment_rate(self):
        total = self._accounts().filter(
            Account.subscription_status.in_(("active", "past_due"))
        ).count()
        return _percentage(self.past_due_accounts_count(), total)

    def recovery_rate(self):
        # Needs payment-attempt history, which is not recorded.
        return 0.0

    def past_due_by_age(self):
        """Past-due accounts bucketed by days since their last update."""
        buckets = {}
        for label, newer_than, older_than in self.AGE_BUCKETS:
            query = self._past_due()
            if older_than is not None:
                query = query.filter(Account.updated_at >= self._ago(older_than))
            if newer_than:
                query = query.filter(Account.updated_at < self._ago(newer_than))
            buckets[label] = query.count()
        return buckets

    def healthy_mrr(self):
        return _monthly_sum(self._paid_accounts(("active",)).all())

    def revenue_health_score(self):
        """Share of MRR coming from accounts in good standing, capped at 100."""
        total = RevenueMetrics(self.now).mrr()
        if not total:
            return 0.0
        return min(_round(self.healthy_mrr() / total * 100), 100.0)

    def accounts_needing_attention(self):
        return self._past_due().filter(
            Account.updated_at < self._ago(ATTENTION_AFTER_DAYS)
        ).count()

    def projected_churn_from_past_due(self):
        return _round(self.at_risk_revenue() * PAST_DUE_CHURN_FACTOR)

    def to_dict(self):
        return {
            "past_due_accounts_count": self.past_due_accounts_count(),
            "past_due_percentage": self.past_due_percentage(),
            "at_risk_revenue": self.at_risk_revenue(),
            "failed_payment_rate": self.failed_payment_rate(),
            "recovery_rate": self.recovery_rate(),
            "past_due_by_age": self.past_due_by_age(),
            "healthy_mrr": self.healthy_mrr(),
            "revenue_health_score": self.revenue_health_score(),
            "accounts_needing_attention": self.accounts_needing_attention(),
            "projected_churn_from_past_due": self.projected_churn_from_past_due(),
        }
