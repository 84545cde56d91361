"""Owner blueprint — /owner/metrics

Platform-wide SaaS metrics for the platform owner (User.is_admin).
Responses are cached for METRICS_CACHE_SECONDS; 0 turns caching off.
"""

from flask import Blueprint, current_app, jsonify

from billdesk.decorators import admin_required
from billdesk.extensions import cache
from billdesk.services.metrics import CustomerAnalytics, PaymentHealth, RevenueMetrics

owner_bp = Blueprint("owner", __name__, url_prefix="/owner")


def _build_all():
    return {
        "revenue": RevenueMetrics().to_dict(),
        "customers": CustomerAnalytics().to_dict(),
        "payment_health": PaymentHealth().to_dict(),
    }


SECTIONS = {
    "all": _build_all,
    "revenue": lambda: RevenueMetrics().to_dict(),
    "customers": lambda: CustomerAnalytics().to_dict(),
    "payment-health": lambda: PaymentHealth().to_dict(),
}


def _cached(section):
    timeout = current_app.config.get("METRICS_CACHE_SECONDS", 0)
    if not timeout:
        return SECTIONS[section]()

    key = f"metrics/{section}"
    data = cache.get(key)
    if data is None:
        data = SECTIONS[section]()
        cache.set(key, data, timeout=timeout)
    return data


@owner_bp.route("/metrics")
@admin_required
def metrics():
    return jsonify(ok=True, metrics=_cached("all"))


@owner_bp.route("/metrics/revenue")
@admin_required
def revenue():
    return jsonify(ok=True, metrics=_cached("revenue"))


@owner_bp.route("/metrics/customers")
@admin_required
def customers():
    return jsonify(ok=True, metrics=_cached("customers"))


@owner_bp.route("/metrics/payment-health")
@admin_required
def payment_health():
    return jsonify(ok=True, metrics=_cached("payment-health"))
