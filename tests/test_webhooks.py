"""Tests for the webhooks blueprint and Stripe event handling.

Events are delivered as real JSON bodies signed with the test webhook
secret, so signature verification and payload parsing run unpatched.

Covers:
- Webhook signature verification (missing, invalid, tampered, wrong secret)
- Idempotent event processing (duplicate events skipped)
- customer.subscription.created / updated / deleted handlers
- Unknown Stripe statuses and unknown prices hold prior state
- Events for discarded accounts are dropped
- invoice.payment_failed / invoice.payment_succeeded handlers
- checkout.session.completed and payment_intent.succeeded for client invoices
- Unknown customers and unknown event types (acknowledged, no writes)
- Handler failures answer 500 and leave no stripe_events row
"""

import json
import time
from unittest.mock import patch

import pytest
import stripe

from billdesk.extensions import db
from billdesk.models.audit import AuditEvent
from billdesk.models.stripe_event import StripeEvent
from billdesk.services import stripe_service
from billdesk.services.billing_service import map_subscription_status

CONSTRUCT_EVENT = "billdesk.services.stripe_service.stripe.Webhook.construct_event"


def _sign(payload, secret, timestamp=None):
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signature = stripe.WebhookSignature._compute_signature(f"{timestamp}.{payload}", secret)
    return f"t={timestamp},v1={signature}"


def _post(client, payload="{}", signature="valid_sig"):
    return client.post(
        "/stripe/webhooks",
        data=payload,
        content_type="application/json",
        headers={"Stripe-Signature": signature},
    )


def _event(event_type, obj, event_id="evt_test_1", created=1700000000):
    return {
        "id": event_id,
        "type": event_type,
        "created": created,
        "data": {"object": obj},
    }


def _subscription(status="active", price_id="price_pro", customer="cus_acme", **extra):
    data = {
        "id": "sub_123",
        "customer": customer,
        "status": status,
        "items": {"data": [{"price": {"id": price_id}}]},
    }
    data.update(extra)
    return data


def _deliver(client, event, secret=None):
    payload = json.dumps(event)
    secret = secret or client.application.config["STRIPE_WEBHOOK_SECRET"]
    return _post(client, payload, _sign(payload, secret))


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, seed_data):
        """POST /stripe/webhooks without signature -> 400."""
        resp = client.post(
            "/stripe/webhooks", data="{}", content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data

    def test_invalid_signature_returns_400(self, client, seed_data):
        """POST /stripe/webhooks with bad signature -> 400."""
        payload = json.dumps(_event("customer.subscription.deleted", _subscription()))
        resp = _post(client, payload, "t=1700000000,v1=deadbeef")
        assert resp.status_code == 400
        assert b"Invalid signature" in resp.data
        assert StripeEvent.query.count() == 0

    def test_wrong_secret_returns_400(self, client, seed_data):
        resp = _deliver(
            client,
            _event("customer.subscription.deleted", _subscription()),
            secret="whsec_someone_else",
        )
        assert resp.status_code == 400
        assert seed_data["acme"].subscription_status == "active"

    def test_tampered_body_returns_400(self, client, seed_data, app):
        original = json.dumps(_event("payment_intent.succeeded", {
            "id": "pi_1", "metadata": {"invoice_id": "someone-else"},
        }))
        signature = _sign(original, app.config["STRIPE_WEBHOOK_SECRET"])
        tampered = original.replace("someone-else", seed_data["invoice"].id)
        assert _post(client, tampered, signature).status_code == 400
        assert seed_data["invoice"].status == "sent"

    def test_signed_delivery_reaches_handlers_as_plain_data(self, client, seed_data):
        """A genuinely signed payment_intent.succeeded pays the invoice."""
        invoice = seed_data["invoice"]
        with patch("billdesk.services.mailers.send_payment_received_email"):
            resp = _deliver(client, _event("payment_intent.succeeded", {
                "id": "pi_signed", "object": "payment_intent",
                "metadata": {"invoice_id": invoice.id},
            }, event_id="evt_signed"))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "processed"
        assert invoice.status == "paid"
        assert invoice.payment_reference == "pi_signed"

    @patch(CONSTRUCT_EVENT)
    def test_webhook_secret_passed_through(self, mock_construct, app, client, seed_data):
        payload = json.dumps(_event("ping", {}))
        resp = _post(client, payload)
        args = mock_construct.call_args[0]
        assert args[0] == payload
        assert args[1] == "valid_sig"
        assert args[2] == app.config["STRIPE_WEBHOOK_SECRET"]
        assert resp.get_json()["status"] == "ignored"


class TestWebhookIdempotency:
    """Tests for duplicate event handling."""

    def test_duplicate_event_returns_already_processed(self, client, seed_data):
        db.session.add(StripeEvent(
            stripe_event_id="evt_duplicate_123",
            event_type="customer.subscription.deleted",
        ))
        db.session.commit()

        resp = _deliver(client, _event(
            "customer.subscription.deleted", _subscription(), event_id="evt_duplicate_123",
        ))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "already_processed"
        # The duplicate must not have canceled anything
        assert seed_data["acme"].subscription_status == "active"

    def test_event_recorded_once(self, client, seed_data):
        event = _event("customer.subscription.updated", _subscription(), event_id="evt_once")
        assert _deliver(client, event).get_json()["status"] == "processed"
        assert _deliver(client, event).get_json()["status"] == "already_processed"
        assert StripeEvent.query.filter_by(stripe_event_id="evt_once").count() == 1


class TestSubscriptionEvents:
    """customer.subscription.* handlers."""

    def test_created_sets_plan_and_status(self, client, seed_data):
        acme = seed_data["acme"]
        acme.subscription_status = "trialing"
        db.session.commit()

        resp = _deliver(client, _event(
            "customer.subscription.created",
            _subscription(status="active", price_id="price_pro"),
        ))
        assert resp.status_code == 200
        assert acme.subscription_status == "active"
        assert acme.plan_id == seed_data["plans"]["pro"].id
        assert AuditEvent.query.filter_by(action="subscription.created").count() == 1

    def test_updated_to_trialing_sets_trial_end(self, client, seed_data):
        _deliver(client, _event(
            "customer.subscription.updated",
            _subscription(status="trialing", trial_end=1900000000),
        ))
        acme = seed_data["acme"]
        assert acme.subscription_status == "trialing"
        assert acme.trial_ends_at is not None
        assert acme.trial_ends_at.year == 2030

    def test_updated_unknown_status_holds_prior(self, client, seed_data):
        _deliver(client, _event(
            "customer.subscription.updated", _subscription(status="incomplete"),
        ))
        assert seed_data["acme"].subscription_status == "active"

    def test_updated_unknown_price_keeps_plan(self, client, seed_data):
        _deliver(client, _event(
            "customer.subscription.updated", _subscription(price_id="price_mystery"),
        ))
        assert seed_data["acme"].plan_id == seed_data["plans"]["starter"].id

    def test_updated_to_past_due_notifies_owners(self, client, seed_data):
        with patch("billdesk.services.mailers.send_payment_issue_email") as mock_send:
            _deliver(client, _event(
                "customer.subscription.updated", _subscription(status="past_due"),
            ))
        assert seed_data["acme"].subscription_status == "past_due"
        mock_send.assert_called_once_with(seed_data["acme"])

    def test_audit_records_transition(self, client, seed_data):
        _deliver(client, _event(
            "customer.subscription.updated", _subscription(status="unpaid"),
        ))
        event = AuditEvent.query.filter_by(action="subscription.updated").first()
        assert event.account_id == seed_data["acme"].id
        assert event.actor_user_id is None
        assert event.metadata_["previous_status"] == "active"
        assert event.metadata_["status"] == "canceled"

    def test_deleted_moves_to_free_plan(self, client, seed_data):
        with patch("billdesk.services.mailers.send_subscription_canceled_email") as mock_send:
            resp = _deliver(client, _event(
                "customer.subscription.deleted", _subscription(status="canceled"),
            ))
        assert resp.get_json()["status"] == "processed"
        acme = seed_data["acme"]
        assert acme.subscription_status == "canceled"
        assert acme.plan_id == seed_data["plans"]["free"].id
        mock_send.assert_called_once()

    def test_paused_and_resumed(self, client, seed_data):
        _deliver(client, _event(
            "customer.subscription.paused", _subscription(status="paused"), event_id="evt_p",
        ))
        assert seed_data["acme"].subscription_status == "paused"

        _deliver(client, _event(
            "customer.subscription.resumed", _subscription(status="active"), event_id="evt_r",
        ))
        assert seed_data["acme"].subscription_status == "active"

    def test_unknown_customer_is_noop(self, client, seed_data):
        resp = _deliver(client, _event(
            "customer.subscription.deleted", _subscription(customer="cus_nobody"),
        ))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "processed"
        assert seed_data["acme"].subscription_status == "active"
        assert AuditEvent.query.count() == 0


class TestInvoiceEvents:
    """invoice.payment_failed / invoice.payment_succeeded."""

    def test_payment_failed_sets_past_due(self, client, seed_data):
        resp = _deliver(client, _event("invoice.payment_failed", {
            "id": "in_1", "customer": "cus_acme", "amount_due": 1900,
        }))
        assert resp.status_code == 200
        assert seed_data["acme"].subscription_status == "past_due"
        event = AuditEvent.query.filter_by(action="invoice.payment_failed").first()
        assert event.metadata_["amount_due"] == 1900

    def test_payment_succeeded_recovers_past_due(self, client, seed_data):
        seed_data["acme"].subscription_status = "past_due"
        db.session.commit()
        _deliver(client, _event("invoice.payment_succeeded", {
            "id": "in_2", "customer": "cus_acme", "amount_paid": 1900,
        }))
        assert seed_data["acme"].subscription_status == "active"

    def test_payment_succeeded_leaves_trialing_alone(self, client, seed_data):
        seed_data["acme"].subscription_status = "trialing"
        db.session.commit()
        _deliver(client, _event("invoice.payment_succeeded", {
            "id": "in_3", "customer": "cus_acme",
        }))
        assert seed_data["acme"].subscription_status == "trialing"


class TestClientInvoicePayments:
    """Stripe payments against client invoices."""

    def test_checkout_completed_marks_invoice_paid(self, client, seed_data):
        invoice = seed_data["invoice"]
        with patch("billdesk.services.mailers.send_payment_received_email") as mock_send:
            resp = _deliver(client, _event("checkout.session.completed", {
                "id": "cs_1",
                "payment_status": "paid",
                "payment_intent": "pi_123",
                "metadata": {"invoice_id": invoice.id},
            }))
        assert resp.status_code == 200
        assert invoice.status == "paid"
        assert invoice.payment_method == "stripe"
        assert invoice.payment_reference == "pi_123"
        assert invoice.paid_at is not None
        mock_send.assert_called_once_with(invoice)
        assert AuditEvent.query.filter_by(action="invoice.paid").count() == 1

    def test_unpaid_checkout_session_ignored(self, client, seed_data):
        _deliver(client, _event("checkout.session.completed", {
            "id": "cs_2",
            "payment_status": "unpaid",
            "metadata": {"invoice_id": seed_data["invoice"].id},
        }))
        assert seed_data["invoice"].status == "sent"

    def test_subscription_checkout_without_invoice_ignored(self, client, seed_data):
        resp = _deliver(client, _event("checkout.session.completed", {
            "id": "cs_3", "payment_status": "paid", "metadata": {"account_id": "x"},
        }))
        assert resp.get_json()["status"] == "processed"
        assert seed_data["invoice"].status == "sent"

    def test_payment_intent_succeeded_marks_invoice_paid(self, client, seed_data):
        invoice = seed_data["invoice"]
        _deliver(client, _event("payment_intent.succeeded", {
            "id": "pi_456", "metadata": {"invoice_id": invoice.id},
        }))
        assert invoice.status == "paid"
        assert invoice.payment_reference == "pi_456"

    def test_second_payment_event_does_not_repay(self, client, seed_data):
        invoice = seed_data["invoice"]
        _deliver(client, _event("payment_intent.succeeded", {
            "id": "pi_1", "metadata": {"invoice_id": invoice.id},
        }, event_id="evt_a"))
        _deliver(client, _event("checkout.session.completed", {
            "id": "cs_9", "payment_status": "paid", "payment_intent": "pi_2",
            "metadata": {"invoice_id": invoice.id},
        }, event_id="evt_b"))
        assert invoice.payment_reference == "pi_1"
        assert AuditEvent.query.filter_by(action="invoice.paid").count() == 1

    def test_unknown_invoice_is_noop(self, client, seed_data):
        resp = _deliver(client, _event("payment_intent.succeeded", {
            "id": "pi_7", "metadata": {"invoice_id": "does-not-exist"},
        }))
        assert resp.status_code == 200


class TestUnhandledAndFailures:
    def test_unknown_event_type_ignored(self, client, seed_data):
        resp = _deliver(client, _event("customer.created", {"id": "cus_new"}))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ignored"
        assert StripeEvent.query.filter_by(event_type="customer.created").count() == 1

    def test_handler_error_returns_500_and_is_retried(self, client, seed_data):
        event = _event("customer.subscription.updated", _subscription(), event_id="evt_boom")
        with patch.dict(
            stripe_service.EVENT_HANDLERS,
            {"customer.subscription.updated": _explode},
        ):
            resp = _deliver(client, event)
        assert resp.status_code == 500
        assert StripeEvent.query.filter_by(stripe_event_id="evt_boom").count() == 0

        # Redelivery after the fault is processed normally
        assert _deliver(client, event).get_json()["status"] == "processed"


class TestDiscardedAccounts:
    """A soft-deleted account no longer reconciles with Stripe."""

    def _discard(self, seed_data):
        acme = seed_data["acme"]
        acme.discard()
        acme.subscription_status = "canceled"
        db.session.commit()
        return acme

    def test_subscription_update_dropped(self, client, seed_data):
        acme = self._discard(seed_data)
        resp = _deliver(client, _event(
            "customer.subscription.updated", _subscription(status="active"),
        ))
        assert resp.status_code == 200
        assert acme.subscription_status == "canceled"
        assert acme.plan_id == seed_data["plans"]["starter"].id
        assert AuditEvent.query.filter_by(account_id=acme.id).count() == 0

    def test_payment_failed_dropped(self, client, seed_data):
        acme = self._discard(seed_data)
        with patch("billdesk.services.mailers.send_payment_issue_email") as mock_send:
            _deliver(client, _event("invoice.payment_failed", {
                "id": "in_1", "customer": "cus_acme",
            }))
        assert acme.subscription_status == "canceled"
        mock_send.assert_not_called()


def _explode(event):
    raise RuntimeError("database unavailable")


class TestStatusMapping:
    @pytest.mark.parametrize("stripe_status, expected", [
        ("trialing", "trialing"),
        ("active", "active"),
        ("past_due", "past_due"),
        ("canceled", "canceled"),
        ("unpaid", "canceled"),
        ("incomplete_expired", "canceled"),
        ("paused", "paused"),
        ("incomplete", "active"),
        ("brand_new_status", "active"),
        (None, "active"),
    ])
    def test_mapping(self, stripe_status, expected):
        assert map_subscription_status(stripe_status, "active") == expected
