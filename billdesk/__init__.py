import os
import logging
from decimal import Decimal, InvalidOperation

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from billdesk.config import config_by_name
from billdesk.extensions import db, migrate, login_manager, csrf, limiter, cache

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    cache.init_app(app)

    from billdesk.jobs import init_celery
    init_celery(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from billdesk import models  # noqa: F401

    # --- Tenant middleware ---
    from billdesk.middleware.tenant import init_tenant_middleware
    init_tenant_middleware(app)

    # --- Register blueprints ---
    from billdesk.blueprints.auth import auth_bp
    from billdesk.blueprints.account import account_bp
    from billdesk.blueprints.members import members_bp
    from billdesk.blueprints.clients import clients_bp
    from billdesk.blueprints.invoices import invoices_bp
    from billdesk.blueprints.estimates import estimates_bp
    from billdesk.blueprints.exports import exports_bp
    from billdesk.blueprints.billing import billing_bp
    from billdesk.blueprints.pay import pay_bp
    from billdesk.blueprints.owner import owner_bp
    from billdesk.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(account_bp)
    app.register_blueprint(members_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(estimates_bp)
    app.register_blueprint(exports_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(pay_bp)
    app.register_blueprint(owner_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF: raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        return jsonify(ok=True, service="billdesk")

    # --- Error handlers ---
    @app.errorhandler(HTTPException)
    def http_error(e):
        """Every HTTP error as JSON: {"error": name, "message": description}."""
        if e.code and e.code >= 500:
            original = getattr(e, "original_exception", None)
            logger.error(f"Server error: {original or e}", exc_info=original)
        return jsonify({"error": e.name, "message": e.description}), e.code

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Prevent XSS (legacy but still useful)
        response.headers["X-XSS-Protection"] = "1; mode=block"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        # Content Security Policy
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' https://js.stripe.com; "
            "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com; "
            "img-src 'self' data:; "
            "font-src 'self' https://fonts.gstatic.com; "
            "connect-src 'self' https://api.stripe.com; "
            "frame-src https://js.stripe.com https://hooks.stripe.com; "
            "base-uri 'self'; "
            "form-action 'self' https://checkout.stripe.com https://billing.stripe.com; "
            "frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Custom Jinja filters ---
    @app.template_filter("money")
    def money_filter(value):
        """Format an amount with thousands separators and two decimals."""
        try:
            amount = Decimal(str(value if value is not None else 0))
        except InvalidOperation:
            return str(value)
        return f"{amount:,.2f}"

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


DEFAULT_PLANS = (
    # name, price_cents, interval, price id config key, features
    ("Free", 0, "month", None, ["invoices", "estimates"]),
    ("Starter", 1900, "month", "STRIPE_STARTER_PRICE_ID",
     ["invoices", "estimates", "online_payments", "reminders"]),
    ("Pro", 4900, "month", "STRIPE_PRO_PRICE_ID",
     ["invoices", "estimates", "online_payments", "reminders", "team", "exports"]),
)


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-plans")
    def seed_plans():
        """Create the default Free / Starter / Pro plans if missing.

        Stripe price IDs come from STRIPE_STARTER_PRICE_ID and
        STRIPE_PRO_PRICE_ID; existing plans get their price ID filled in.

        Usage:
            flask seed-plans
        """
        from billdesk.models.account import Plan

        for position, (name, price_cents, interval, price_key, features) in enumerate(DEFAULT_PLANS):
            price_id = app.config.get(price_key) if price_key else None
            plan = Plan.query.filter_by(name=name).first()
            if plan:
                if price_id and not plan.stripe_price_id:
                    plan.stripe_price_id = price_id
                click.echo(f"Plan already exists: {name}")
                continue
            db.session.add(Plan(
                name=name,
                price_cents=price_cents,
                interval=interval,
                stripe_price_id=price_id,
                sort_order=position,
                features=features,
            ))
            click.echo(f"Created plan: {name} ({price_cents / 100:.2f}/{interval})")
        db.session.commit()

    @app.cli.command("create-admin")
    @click.option("--email", required=True, help="Admin email")
    @click.option("--password", required=True, help="Admin password")
    @click.option("--name", "full_name", default="Admin", help="Full name")
    def create_admin(email, password, full_name):
        """Create a platform admin, or promote an existing user.

        Usage:
            flask create-admin --email admin@example.com --password s3cret
        """
        from billdesk.models.user import User

        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if user:
            user.is_admin = True
            click.echo(f"Promoted existing user to admin: {email}")
        else:
            db.session.add(User(
                email=email,
                password_hash=generate_password_hash(password),
                full_name=full_name,
                is_admin=True,
            ))
            click.echo(f"Created admin user: {email}")
        db.session.commit()

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify every plan's Stripe price exists in the key's mode (Live/Test)."""
        import stripe as _stripe

        from billdesk.models.account import Plan

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        _stripe.api_key = api_key

        for plan in Plan.query.order_by(Plan.sort_order).all():
            if not plan.stripe_price_id:
                click.echo(f"  {plan.name}: (no price)")
                continue
            try:
                price = _stripe.Price.retrieve(plan.stripe_price_id)
            except _stripe.error.InvalidRequestError as e:
                click.echo(f"  {plan.name}: {plan.stripe_price_id}")
                click.echo(f"    ERROR: {e}")
                continue
            livemode = getattr(price, "livemode", "?")
            click.echo(f"  {plan.name}: {plan.stripe_price_id} (livemode={livemode})")
            if livemode is True and key_mode != "Live":
                click.echo("    WARNING: This price is Live but your key is Test.")
            elif livemode is False and key_mode == "Live":
                click.echo("    WARNING: This price is Test but your key is Live.")

    @app.cli.command("cleanup-sessions")
    @click.option("--expiry-days", type=int, default=None, help="Delete sessions older than this.")
    @click.option("--inactive-days", type=int, default=None, help="Delete sessions idle longer than this.")
    def cleanup_sessions(expiry_days, inactive_days):
        """Delete expired and inactive login sessions.

        Usage:
            flask cleanup-sessions
            flask cleanup-sessions --expiry-days 14 --inactive-days 3
        """
        from billdesk.services.auth_service import cleanup_expired_sessions

        result = cleanup_expired_sessions(
            expiry_days=expiry_days or app.config["SESSION_MAX_AGE_DAYS"],
            inactive_days=inactive_days or app.config["SESSION_INACTIVE_DAYS"],
        )
        click.echo(
            f"Deleted {result['deleted_count']} sessions "
            f"({result['old_sessions']} expired, {result['inactive_sessions']} inactive)"
        )

    @app.cli.command("warm-cache")
    @click.option("--scope", default="all", help="all, accounts, users or counts")
    def warm_cache(scope):
        """Preload frequently read records into the cache.

        Usage:
            flask warm-cache
            flask warm-cache --scope counts
        """
        from billdesk.services.cache_service import warmup

        result = warmup(scope)
        click.echo(f"Cache warmup: {result}")

    @app.cli.command("send-payment-reminders")
    @click.option(
        "--type", "reminder_type",
        type=click.Choice(["due_soon", "overdue"]),
        default="overdue",
        help="Which sweep to run.",
    )
    def send_payment_reminders(reminder_type):
        """Email payment reminders for unpaid invoices.

        Usage:
            flask send-payment-reminders
            flask send-payment-reminders --type due_soon
        """
        from billdesk.services import reminder_service

        if reminder_type == "due_soon":
            result = reminder_service.send_due_soon_reminders()
        else:
            result = reminder_service.send_overdue_reminders()
        click.echo(f"Payment reminders ({reminder_type}): {result}")
