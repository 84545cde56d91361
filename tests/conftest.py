"""Shared test fixtures for the Billdesk test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off,
  Celery eager)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- fake_browser: stand-in for Playwright so PDFs render without Chromium
- seed_data: plans, two accounts with members of every role, clients and
  an invoice
- login: signs a test client in as one of the seeded users
"""

from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest
from flask import g, has_app_context
from flask.testing import FlaskClient
from werkzeug.security import generate_password_hash

from billdesk import create_app
from billdesk.extensions import cache, db as _db
from billdesk.models.account import Account, Plan
from billdesk.models.billing import BillingCustomer
from billdesk.models.client import Client
from billdesk.models.invoice import Invoice, InvoiceLineItem
from billdesk.models.membership import Membership
from billdesk.models.user import User
from billdesk.utils import utcnow

PASSWORD = "password123"
FAKE_PDF = b"%PDF-1.4 test document"


class FreshLoginClient(FlaskClient):
    """Test client that reloads the logged-in user on every request.

    Requests reuse the test's app context, and Flask-Login caches the user
    on g, so without this a second client would see the first one's user.
    """

    def open(self, *args, **kwargs):
        if has_app_context():
            g.pop("_login_user", None)
        return super().open(*args, **kwargs)


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    app.test_client_class = FreshLoginClient
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        cache.clear()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture(autouse=True)
def fake_browser():
    """Replace Playwright with a mock whose page.pdf() returns FAKE_PDF.

    Yields the mocked sync_playwright so tests can inspect the calls.
    """
    playwright = MagicMock()
    page = playwright.chromium.launch.return_value.new_page.return_value
    page.pdf.return_value = FAKE_PDF

    factory = MagicMock()
    factory.return_value.__enter__.return_value = playwright
    with patch("billdesk.services.pdf_service.sync_playwright", factory):
        yield factory


def _user(email, full_name, is_admin=False):
    user = User(
        email=email,
        password_hash=generate_password_hash(PASSWORD),
        full_name=full_name,
        is_admin=is_admin,
    )
    _db.session.add(user)
    return user


@pytest.fixture
def seed_data(db_session):
    """Seed two accounts, their members, clients and a sent invoice.

    Acme (subdomain "acme", active on Starter) has one member per role.
    Globex (subdomain "globex") belongs to another user and exists to
    prove tenant isolation.
    """
    # --- Plans ---
    free = Plan(name="Free", price_cents=0, interval="month", sort_order=0)
    starter = Plan(
        name="Starter", price_cents=1900, interval="month",
        stripe_price_id="price_starter", sort_order=1,
    )
    pro = Plan(
        name="Pro", price_cents=4900, interval="month",
        stripe_price_id="price_pro", sort_order=2,
    )
    _db.session.add_all([free, starter, pro])

    # --- Users ---
    owner = _user("owner@acme.test", "Olive Owner")
    admin = _user("admin@acme.test", "Adam Admin")
    member = _user("member@acme.test", "Mia Member")
    guest = _user("guest@acme.test", "Gus Guest")
    outsider = _user("owner@globex.test", "Otto Outsider")
    platform_admin = _user("root@billdesk.test", "Platform Admin", is_admin=True)
    _db.session.flush()

    # --- Accounts ---
    acme = Account(
        name="Acme", slug="acme", subdomain="acme",
        subscription_status="active", plan_id=starter.id,
    )
    globex = Account(
        name="Globex", slug="globex", subdomain="globex",
        subscription_status="trialing", plan_id=free.id,
    )
    _db.session.add_all([acme, globex])
    _db.session.flush()

    now = utcnow()
    memberships = {}
    for role, user in (
        ("owner", owner), ("admin", admin), ("member", member), ("guest", guest),
    ):
        memberships[role] = Membership(
            user_id=user.id, account_id=acme.id, role=role, accepted_at=now,
        )
        _db.session.add(memberships[role])
    _db.session.add(Membership(
        user_id=outsider.id, account_id=globex.id, role="owner", accepted_at=now,
    ))
    _db.session.add(BillingCustomer(account_id=acme.id, stripe_customer_id="cus_acme"))

    # --- Clients ---
    acme_client = Client(
        account_id=acme.id, name="Wile E. Coyote", email="wile@coyote.test",
        company="Coyote Labs",
    )
    globex_client = Client(
        account_id=globex.id, name="Hank Scorpio", email="hank@globex.test",
    )
    _db.session.add_all([acme_client, globex_client])
    _db.session.flush()

    # --- Invoice (sent, due in two weeks) ---
    invoice = Invoice(
        account_id=acme.id,
        client_id=acme_client.id,
        invoice_number="INV-10001",
        status="sent",
        issue_date=date.today(),
        due_date=date.today() + timedelta(days=14),
        sent_at=now,
    )
    invoice.line_items = [
        InvoiceLineItem(description="Rocket skates", quantity=2, unit_price=150, position=0),
        InvoiceLineItem(description="Anvil", quantity=1, unit_price=100, position=1),
    ]
    invoice.calculate_totals()
    _db.session.add(invoice)
    _db.session.commit()

    return {
        "plans": {"free": free, "starter": starter, "pro": pro},
        "owner": owner,
        "admin": admin,
        "member": member,
        "guest": guest,
        "outsider": outsider,
        "platform_admin": platform_admin,
        "acme": acme,
        "globex": globex,
        "memberships": memberships,
        "client": acme_client,
        "globex_client": globex_client,
        "invoice": invoice,
    }


@pytest.fixture
def login():
    """Return a helper that signs a test client in by email."""

    def _login(test_client, email, password=PASSWORD, **kwargs):
        resp = test_client.post(
            "/auth/login", json={"email": email, "password": password}, **kwargs
        )
        assert resp.status_code == 200, resp.get_json()
        return resp

    return _login
