"""
Gateway webhook reconciliation tests.

Verifies:
- Signatures are checked before anything is parsed or written
- payment_intent.succeeded creates the ledger exactly once, including
  under a concurrent duplicate delivery
- charge.refunded refunds once; redelivery is a no-op
- Failed payments and unknown events are acknowledged without writes
"""

import json
import time

import pytest

from conftest import (
    charge_refunded_event,
    payment_failed_event,
    payment_succeeded_event,
    sign_payload,
)
from symbiotic.errors import SignatureError, ValidationError
from symbiotic.models import Order, OrderEvent, Payment
from symbiotic.services import order_service, payout_service, webhook_service
from symbiotic.services.gateway_events import (
    ChargeRefunded,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
    parse_event,
)


def _payments(db_session, intent_id):
    db_session.expire_all()
    return db_session.query(Payment).filter_by(payment_intent_id=intent_id).order_by(Payment.id).all()


# =============================================================================
# SIGNATURE VERIFICATION
# =============================================================================


class TestSignatureVerification:

    def test_missing_signature_rejected(self, client, db_session, buyer, two_seller_cart):
        payload = json.dumps(payment_succeeded_event("pi_nosig", buyer.id, two_seller_cart))
        resp = client.post("/api/payments/webhook", data=payload, headers={"Content-Type": "application/json"})

        assert resp.status_code == 400
        assert _payments(db_session, "pi_nosig") == []

    def test_invalid_signature_rejected(self, post_webhook, db_session, buyer, two_seller_cart):
        event = payment_succeeded_event("pi_badsig", buyer.id, two_seller_cart)
        resp = post_webhook(event, signature="t=123,v1=deadbeef")

        assert resp.status_code == 400
        assert resp.json["error"] == "Webhook signature verification failed"
        assert _payments(db_session, "pi_badsig") == []

    def test_wrong_secret_rejected(self, post_webhook, db_session, buyer, two_seller_cart):
        event = payment_succeeded_event("pi_wrongsecret", buyer.id, two_seller_cart)
        resp = post_webhook(event, secret="whsec_someone_else")

        assert resp.status_code == 400
        assert _payments(db_session, "pi_wrongsecret") == []

    def test_tampered_body_rejected(self, client, db_session, buyer, two_seller_cart):
        original = json.dumps(payment_succeeded_event("pi_tamper", buyer.id, two_seller_cart))
        signature = sign_payload(original)
        tampered = original.replace('"amount": 3500', '"amount": 1')

        resp = client.post("/api/payments/webhook", data=tampered, headers={"stripe-signature": signature})
        assert resp.status_code == 400

    def test_stale_timestamp_rejected(self, client, db_session, buyer, two_seller_cart):
        payload = json.dumps(payment_succeeded_event("pi_stale", buyer.id, two_seller_cart))
        signature = sign_payload(payload, timestamp=int(time.time()) - 3600)

        resp = client.post("/api/payments/webhook", data=payload, headers={"stripe-signature": signature})
        assert resp.status_code == 400

    def test_unconfigured_secret_is_500(self, app, monkeypatch, post_webhook, db_session, buyer, two_seller_cart):
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)
        event = payment_succeeded_event("pi_nosecret", buyer.id, two_seller_cart)

        resp = post_webhook(event)
        assert resp.status_code == 500
        assert resp.json["error"] == "Webhook secret not configured"
        assert _payments(db_session, "pi_nosecret") == []

    def test_verify_event_returns_payload(self):
        payload = json.dumps({"id": "evt_1", "type": "ping"})
        event = webhook_service.verify_event(payload.encode(), sign_payload(payload), "whsec_test_secret", 300)
        assert event == {"id": "evt_1", "type": "ping"}

    def test_verify_event_without_secret(self):
        with pytest.raises(SignatureError) as exc_info:
            webhook_service.verify_event(b"{}", "t=1,v1=x", None, 300)
        assert exc_info.value.status_code == 500


# =============================================================================
# EVENT PARSING
# =============================================================================


class TestParseEvent:

    def test_payment_succeeded(self, two_seller_cart):
        event = parse_event(payment_succeeded_event("pi_parse", 7, two_seller_cart))

        assert isinstance(event, PaymentSucceeded)
        assert event.payment_intent_id == "pi_parse"
        assert event.amount_cents == 3500
        assert event.buyer_id == 7
        assert len(event.cart_items) == 2
        assert event.shipping_address == {"city": "Oakland", "country": "US"}

    def test_payment_failed(self):
        event = parse_event(payment_failed_event("pi_fail"))
        assert isinstance(event, PaymentFailed)
        assert event.failure_code == "card_declined"

    def test_charge_refunded_default_reason(self):
        event = parse_event(charge_refunded_event("pi_refund"))
        assert isinstance(event, ChargeRefunded)
        assert event.reason == "Customer requested refund"

    def test_unknown_type(self):
        event = parse_event({"id": "evt_x", "type": "customer.created", "data": {"object": {}}})
        assert event == UnhandledEvent(event_id="evt_x", event_type="customer.created")

    def test_metadata_without_cart_rejected(self):
        event = payment_succeeded_event("pi_nocart", 7, [])
        metadata = event["data"]["object"]["metadata"]
        for key in [k for k in metadata if k.startswith("cart_items")]:
            del metadata[key]
        with pytest.raises(ValidationError):
            parse_event(event)

    def test_metadata_without_buyer_rejected(self, two_seller_cart):
        event = payment_succeeded_event("pi_nobuyer", 7, two_seller_cart)
        del event["data"]["object"]["metadata"]["buyer_id"]
        with pytest.raises(ValidationError):
            parse_event(event)


# =============================================================================
# PAYMENT SUCCEEDED
# =============================================================================


class TestPaymentSucceeded:

    def test_end_to_end_split(self, post_webhook, db_session, buyer, seller_a, seller_b, two_seller_cart):
        resp = post_webhook(payment_succeeded_event("pi_e2e", buyer.id, two_seller_cart))

        assert resp.status_code == 200
        assert resp.json["received"] is True
        assert resp.json["action"] == "created"

        payments = {p.seller_id: p for p in _payments(db_session, "pi_e2e")}
        assert set(payments) == {seller_a.id, seller_b.id}

        order_a = payments[seller_a.id].order
        assert (order_a.subtotal_cents, payments[seller_a.id].platform_fee_cents,
                payments[seller_a.id].seller_amount_cents) == (2000, 200, 1800)

        order_b = payments[seller_b.id].order
        assert (order_b.subtotal_cents, payments[seller_b.id].platform_fee_cents,
                payments[seller_b.id].seller_amount_cents) == (1500, 150, 1350)

        assert order_a.status == "pending"
        assert order_a.payment_status == "paid"
        assert order_a.shipping_address == {"city": "Oakland", "country": "US"}

    def test_replay_is_idempotent(self, post_webhook, db_session, buyer, product_p1, two_seller_cart):
        event = payment_succeeded_event("pi_replay", buyer.id, two_seller_cart)

        first = post_webhook(event)
        second = post_webhook(event)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json["action"] == "duplicate"
        assert len(_payments(db_session, "pi_replay")) == 2
        assert db_session.query(Order).count() == 2
        assert product_p1.stock == 8

    def test_concurrent_duplicate_reports_success(self, monkeypatch, post_webhook, db_session, buyer, product_p1, two_seller_cart):
        event = payment_succeeded_event("pi_race", buyer.id, two_seller_cart)
        assert post_webhook(event).status_code == 200

        # Second delivery misses the pre-check, as if both raced past it
        real_lookup = order_service.find_payments_for_intent
        calls = {"count": 0}

        def racing_lookup(payment_intent_id):
            calls["count"] += 1
            if calls["count"] == 1:
                return []
            return real_lookup(payment_intent_id)

        monkeypatch.setattr(order_service, "find_payments_for_intent", racing_lookup)

        resp = post_webhook(event)
        assert resp.status_code == 200
        assert resp.json["action"] == "duplicate"
        assert calls["count"] == 2

        assert len(_payments(db_session, "pi_race")) == 2
        assert db_session.query(Order).count() == 2
        assert product_p1.stock == 8

    def test_amount_mismatch_not_acknowledged(self, post_webhook, db_session, buyer, two_seller_cart):
        resp = post_webhook(payment_succeeded_event("pi_mismatch", buyer.id, two_seller_cart, amount=3000))

        assert resp.status_code == 400
        assert _payments(db_session, "pi_mismatch") == []

    def test_insufficient_stock_creates_nothing(self, post_webhook, db_session, buyer, product_p1, product_p2, two_seller_cart):
        product_p2.stock = 1
        db_session.commit()

        resp = post_webhook(payment_succeeded_event("pi_nostock", buyer.id, two_seller_cart))

        assert resp.status_code == 409
        assert _payments(db_session, "pi_nostock") == []
        assert product_p1.stock == 10

    def test_unknown_buyer_rejected(self, post_webhook, db_session, two_seller_cart):
        resp = post_webhook(payment_succeeded_event("pi_ghost", 999_999, two_seller_cart))
        assert resp.status_code == 400
        assert _payments(db_session, "pi_ghost") == []


# =============================================================================
# FAILURES AND UNKNOWN EVENTS
# =============================================================================


class TestAcknowledgedWithoutWrites:

    def test_payment_failed_logged_only(self, post_webhook, db_session, buyer):
        resp = post_webhook(payment_failed_event("pi_declined"))

        assert resp.status_code == 200
        assert resp.json["action"] == "failure_recorded"
        assert db_session.query(Order).count() == 0

    def test_unknown_event_ignored(self, post_webhook, db_session):
        resp = post_webhook({"id": "evt_unknown", "type": "customer.created", "data": {"object": {"id": "cus_1"}}})

        assert resp.status_code == 200
        assert resp.json == {"received": True, "action": "ignored"}

    def test_malformed_event_rejected(self, post_webhook, db_session):
        resp = post_webhook({"id": "evt_bad", "type": "payment_intent.succeeded"})
        assert resp.status_code == 400


# =============================================================================
# REFUNDS
# =============================================================================


class TestChargeRefunded:

    def test_refund_marks_payments_and_orders(self, post_webhook, db_session, buyer, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_refund", buyer.id, two_seller_cart))

        resp = post_webhook(charge_refunded_event("pi_refund", reason="requested_by_customer", amount_refunded=3500))
        assert resp.status_code == 200
        assert resp.json["action"] == "refunded"

        for payment in _payments(db_session, "pi_refund"):
            assert payment.status == "refunded"
            assert payment.refunded_at is not None
            order = payment.order
            assert order.status == "refunded"
            assert order.payment_status == "refunded"
            assert order.refund_reason == "requested_by_customer"
            assert order.refunded_at is not None
            assert order.timeline[-1].status == "refunded"

    def test_refund_replay_is_noop(self, post_webhook, db_session, buyer, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_refund_twice", buyer.id, two_seller_cart))
        post_webhook(charge_refunded_event("pi_refund_twice"))

        db_session.expire_all()
        events_before = db_session.query(OrderEvent).count()

        resp = post_webhook(charge_refunded_event("pi_refund_twice"))
        assert resp.status_code == 200
        assert resp.json["action"] == "already_refunded"

        db_session.expire_all()
        assert db_session.query(OrderEvent).count() == events_before
        for payment in _payments(db_session, "pi_refund_twice"):
            assert payment.status == "refunded"
            assert payment.order.refund_reason == "Customer requested refund"

    def test_refund_after_delivery(self, post_webhook, db_session, buyer, seller_a, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_refund_late", buyer.id, two_seller_cart))
        payment_a = next(p for p in _payments(db_session, "pi_refund_late") if p.seller_id == seller_a.id)
        for status in ("confirmed", "in_production", "ready", "in_transit", "delivered"):
            order_service.update_status(payment_a.order_id, status, seller_a.user)

        post_webhook(charge_refunded_event("pi_refund_late"))

        db_session.expire_all()
        order = db_session.get(Order, payment_a.order_id)
        assert order.status == "refunded"
        assert order.delivered_at is not None

    def test_refund_for_unknown_intent_acknowledged(self, post_webhook, db_session):
        resp = post_webhook(charge_refunded_event("pi_never_seen"))
        assert resp.status_code == 200
        assert resp.json["action"] == "ignored"

    def test_partial_refund_removes_payments_from_payout(self, post_webhook, db_session, buyer, seller_a, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_partial", buyer.id, two_seller_cart))
        assert payout_service.get_available_balance(seller_a.user_id)["available_balance_cents"] == 1800

        resp = post_webhook(charge_refunded_event("pi_partial", refunded=False, amount_refunded=1500))

        assert resp.status_code == 200
        assert resp.json["action"] == "refunded"
        assert [p.status for p in _payments(db_session, "pi_partial")] == ["refunded", "refunded"]
        assert payout_service.get_available_balance(seller_a.user_id)["available_balance_cents"] == 0
