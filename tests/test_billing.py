"""Tests for the account and billing blueprints.

Covers:
- GET/PATCH/DELETE /account (settings, subdomain validation, soft delete)
- GET /billing/plans
- POST /billing/checkout (owner only, existing vs new Stripe customer,
  unpurchasable plans, Stripe errors)
- POST /billing/portal (with and without a billing customer)
"""

from unittest.mock import MagicMock, patch

import stripe

from billdesk.extensions import db
from billdesk.models.account import Account, Plan
from billdesk.models.audit import AuditEvent
from billdesk.models.billing import BillingCustomer

CHECKOUT_CREATE = "billdesk.services.stripe_service.stripe.checkout.Session.create"
CUSTOMER_CREATE = "billdesk.services.stripe_service.stripe.Customer.create"
PORTAL_CREATE = "billdesk.services.stripe_service.stripe.billing_portal.Session.create"


class TestAccountSettings:
    """Tests for /account."""

    def test_show(self, client, seed_data, login):
        login(client, "guest@acme.test")
        resp = client.get("/account")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["role"] == "guest"
        assert data["account"]["subdomain"] == "acme"
        assert data["account"]["plan"]["name"] == "Starter"
        assert data["account"]["is_active"] is True

    def test_requires_login(self, client, seed_data):
        assert client.get("/account").status_code == 401

    def test_admin_updates_name_and_settings(self, client, seed_data, login):
        acme = seed_data["acme"]
        acme.settings = {"currency": "USD"}
        db.session.commit()

        login(client, "admin@acme.test")
        resp = client.patch("/account", json={
            "name": "Acme Corporation",
            "settings": {"invoice_footer": "Thanks!"},
        })
        assert resp.status_code == 200
        account = resp.get_json()["account"]
        assert account["name"] == "Acme Corporation"
        assert account["settings"] == {"currency": "USD", "invoice_footer": "Thanks!"}

        event = AuditEvent.query.filter_by(action="account.updated").one()
        assert event.metadata_["fields"] == ["name", "settings"]

    def test_member_cannot_update(self, client, seed_data, login):
        login(client, "member@acme.test")
        assert client.patch("/account", json={"name": "Hijacked"}).status_code == 403

    def test_subdomain_validation(self, client, seed_data, login):
        login(client, "owner@acme.test")
        cases = {
            "www": "This subdomain is reserved.",
            "globex": "This subdomain is already taken.",
            "not_valid!": "Subdomain may only contain lowercase letters and numbers.",
        }
        for subdomain, message in cases.items():
            resp = client.patch("/account", json={"subdomain": subdomain})
            assert resp.status_code == 422
            assert resp.get_json()["errors"]["subdomain"] == message
        assert seed_data["acme"].subdomain == "acme"

    def test_subdomain_change(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.patch("/account", json={"subdomain": "ACME2"})
        assert resp.get_json()["account"]["subdomain"] == "acme2"

    def test_settings_must_be_object(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.patch("/account", json={"settings": ["nope"]})
        assert resp.get_json()["errors"]["settings"] == "Settings must be an object."

    def test_no_changes_no_audit(self, client, seed_data, login):
        login(client, "owner@acme.test")
        client.patch("/account", json={"name": "Acme"})
        assert AuditEvent.query.filter_by(action="account.updated").count() == 0

    def test_owner_discards_account(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.delete("/account")
        assert resp.status_code == 200
        assert db.session.get(Account, seed_data["acme"].id).is_discarded
        assert client.get("/account").status_code == 404

    def test_admin_cannot_discard(self, client, seed_data, login):
        login(client, "admin@acme.test")
        assert client.delete("/account").status_code == 403
        assert not seed_data["acme"].is_discarded


class TestPlans:
    def test_lists_active_plans_in_order(self, client, seed_data):
        seed_data["plans"]["pro"].active = False
        db.session.add(Plan(
            name="Yearly", price_cents=24000, interval="year",
            stripe_price_id="price_yearly", sort_order=3,
        ))
        db.session.commit()

        plans = client.get("/billing/plans").get_json()["plans"]
        assert [p["name"] for p in plans] == ["Free", "Starter", "Yearly"]
        assert plans[-1]["monthly_amount"] == 20.0


class TestCheckout:
    """Tests for POST /billing/checkout."""

    @patch(CUSTOMER_CREATE)
    @patch(CHECKOUT_CREATE)
    def test_uses_existing_customer(self, mock_session, mock_customer, client, seed_data, login):
        mock_session.return_value = MagicMock(url="https://checkout.stripe.com/test-session")
        login(client, "owner@acme.test")

        resp = client.post("/billing/checkout", json={"plan_id": seed_data["plans"]["pro"].id})
        assert resp.status_code == 200
        assert resp.get_json()["url"] == "https://checkout.stripe.com/test-session"
        mock_customer.assert_not_called()

        kwargs = mock_session.call_args.kwargs
        assert kwargs["customer"] == "cus_acme"
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_pro", "quantity": 1}]
        assert kwargs["metadata"]["account_id"] == seed_data["acme"].id

    @patch(CUSTOMER_CREATE)
    @patch(CHECKOUT_CREATE)
    def test_creates_customer_once(self, mock_session, mock_customer, client, seed_data, login):
        mock_customer.return_value = MagicMock(id="cus_globex")
        mock_session.return_value = MagicMock(url="https://checkout.stripe.com/globex")
        login(client, "owner@globex.test")

        client.post("/billing/checkout", json={"plan_id": seed_data["plans"]["starter"].id})
        client.post("/billing/checkout", json={"plan_id": seed_data["plans"]["starter"].id})

        mock_customer.assert_called_once()
        assert mock_customer.call_args.kwargs["email"] == "owner@globex.test"
        customer = BillingCustomer.query.filter_by(account_id=seed_data["globex"].id).one()
        assert customer.stripe_customer_id == "cus_globex"

    def test_admin_cannot_checkout(self, client, seed_data, login):
        login(client, "admin@acme.test")
        resp = client.post("/billing/checkout", json={"plan_id": seed_data["plans"]["pro"].id})
        assert resp.status_code == 403

    def test_unknown_plan(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/billing/checkout", json={"plan_id": "nope"})
        assert resp.status_code == 422
        assert resp.get_json()["errors"]["plan_id"] == "Choose an available plan."

    def test_free_plan_cannot_be_purchased(self, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/billing/checkout", json={"plan_id": seed_data["plans"]["free"].id})
        assert resp.status_code == 422
        assert resp.get_json()["errors"]["plan_id"] == "This plan cannot be purchased."

    @patch(CHECKOUT_CREATE, side_effect=stripe.error.APIConnectionError("down"))
    def test_stripe_error(self, mock_session, client, seed_data, login):
        login(client, "owner@acme.test")
        resp = client.post("/billing/checkout", json={"plan_id": seed_data["plans"]["pro"].id})
        assert resp.status_code == 502
        assert resp.get_json()["ok"] is False


class TestCustomerPortal:
    """Tests for POST /billing/portal."""

    @patch(PORTAL_CREATE)
    def test_portal(self, mock_portal, client, seed_data, login):
        mock_portal.return_value = MagicMock(url="https://billing.stripe.com/session")
        login(client, "owner@acme.test")

        resp = client.post("/billing/portal")
        assert resp.status_code == 200
        assert resp.get_json()["url"] == "https://billing.stripe.com/session"
        assert mock_portal.call_args.kwargs["customer"] == "cus_acme"
        assert mock_portal.call_args.kwargs["return_url"].endswith("/account")

    @patch(PORTAL_CREATE)
    def test_portal_without_customer(self, mock_portal, client, seed_data, login):
        login(client, "owner@globex.test")
        resp = client.post("/billing/portal")
        assert resp.status_code == 409
        mock_portal.assert_not_called()

    def test_member_cannot_open_portal(self, client, seed_data, login):
        login(client, "member@acme.test")
        assert client.post("/billing/portal").status_code == 403
