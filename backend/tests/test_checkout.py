"""
Checkout (payment intent) and payment status tests.

Verifies:
- The cart is re-priced against the catalogue before the gateway is called
- The validated cart travels to the webhook as intent metadata
- Gateway failures surface as 500 with no intent created
- Payment status is scoped to the paying buyer
"""

import json
from types import SimpleNamespace

import pytest
import stripe

from conftest import payment_succeeded_event
from symbiotic.errors import ValidationError
from symbiotic.services.checkout_service import build_intent_metadata
from symbiotic.services.gateway_events import (
    METADATA_MAX_KEYS,
    METADATA_VALUE_LIMIT,
    PaymentSucceeded,
    parse_event,
    unpack_metadata_json,
)
from symbiotic.validation import (
    MAX_ADDRESS_FIELD_LENGTH,
    MAX_CART_ITEMS,
    MAX_ID,
    MAX_PRICE_CENTS,
    MAX_QUANTITY,
    SHIPPING_ADDRESS_FIELDS,
    CartItem,
)


@pytest.fixture(scope='function')
def fake_stripe(monkeypatch):
    """Replace stripe.PaymentIntent.create; records the kwargs of each call."""
    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(
            id="pi_fake_123",
            client_secret="pi_fake_123_secret_abc",
            amount=kwargs["amount"],
            currency=kwargs["currency"],
        )

    monkeypatch.setattr(stripe.PaymentIntent, "create", _create)
    return calls


def _checkout_body(cart, amount=3500, **extra):
    body = {"amount_cents": amount, "currency": "usd", "cart_items": cart}
    body.update(extra)
    return body


class TestCreatePaymentIntent:

    def test_creates_intent(self, client, login, buyer, two_seller_cart, fake_stripe):
        resp = client.post(
            "/api/payments/create-payment-intent",
            json=_checkout_body(two_seller_cart, shipping_address={"line1": "1 Commons Way", "city": "Oakland"}),
            headers=login(buyer),
        )

        assert resp.status_code == 200
        assert resp.json == {
            "client_secret": "pi_fake_123_secret_abc",
            "payment_intent_id": "pi_fake_123",
            "amount_cents": 3500,
            "currency": "usd",
        }

        assert len(fake_stripe) == 1
        call = fake_stripe[0]
        assert call["api_key"] == "sk_test_dummy"
        assert call["amount"] == 3500
        assert call["metadata"]["buyer_id"] == str(buyer.id)
        assert json.loads(unpack_metadata_json(call["metadata"], "cart_items")) == two_seller_cart
        assert json.loads(unpack_metadata_json(call["metadata"], "shipping_address")) == {"line1": "1 Commons Way", "city": "Oakland"}

    def test_requires_auth(self, client, db_session, two_seller_cart, fake_stripe):
        resp = client.post("/api/payments/create-payment-intent", json=_checkout_body(two_seller_cart))
        assert resp.status_code == 401
        assert fake_stripe == []

    def test_amount_required(self, client, login, buyer, two_seller_cart, fake_stripe):
        body = _checkout_body(two_seller_cart)
        del body["amount_cents"]
        resp = client.post("/api/payments/create-payment-intent", json=body, headers=login(buyer))
        assert resp.status_code == 400

    def test_amount_below_minimum(self, client, login, buyer, seller_a, product_p1, fake_stripe):
        cheap = [{"seller_id": seller_a.id, "product_id": product_p1.id, "unit_price_cents": 1000, "quantity": 1}]
        resp = client.post(
            "/api/payments/create-payment-intent",
            json=_checkout_body(cheap, amount=49),
            headers=login(buyer),
        )
        assert resp.status_code == 400
        assert fake_stripe == []

    def test_amount_must_match_cart(self, client, login, buyer, two_seller_cart, fake_stripe):
        resp = client.post(
            "/api/payments/create-payment-intent",
            json=_checkout_body(two_seller_cart, amount=3000),
            headers=login(buyer),
        )
        assert resp.status_code == 400
        assert resp.json["details"]["cart_total_cents"] == 3500
        assert fake_stripe == []

    def test_empty_cart(self, client, login, buyer, fake_stripe):
        resp = client.post("/api/payments/create-payment-intent", json=_checkout_body([]), headers=login(buyer))
        assert resp.status_code == 400
        assert resp.json["message"] == "Cart items required"

    def test_unsupported_currency(self, client, login, buyer, two_seller_cart, fake_stripe):
        resp = client.post(
            "/api/payments/create-payment-intent",
            json=_checkout_body(two_seller_cart, currency="jpy"),
            headers=login(buyer),
        )
        assert resp.status_code == 400

    def test_stale_price_rejected(self, client, login, buyer, two_seller_cart, fake_stripe):
        cart = [dict(item) for item in two_seller_cart]
        cart[0]["unit_price_cents"] = 900
        resp = client.post(
            "/api/payments/create-payment-intent",
            json=_checkout_body(cart, amount=3300),
            headers=login(buyer),
        )
        assert resp.status_code == 400
        assert resp.json["details"]["price_cents"] == 1000

    def test_insufficient_stock(self, client, login, buyer, seller_a, product_p1, fake_stripe):
        cart = [{"seller_id": seller_a.id, "product_id": product_p1.id, "unit_price_cents": 1000, "quantity": 11}]
        resp = client.post(
            "/api/payments/create-payment-intent",
            json=_checkout_body(cart, amount=11000),
            headers=login(buyer),
        )
        assert resp.status_code == 409
        assert resp.json["details"]["available"] == 10

    def test_overlong_address_field(self, client, login, buyer, two_seller_cart, fake_stripe):
        body = _checkout_body(two_seller_cart, shipping_address={"line1": "x" * (MAX_ADDRESS_FIELD_LENGTH + 1)})
        resp = client.post("/api/payments/create-payment-intent", json=body, headers=login(buyer))
        assert resp.status_code == 400
        assert fake_stripe == []

    def test_unknown_cart_field(self, client, login, buyer, two_seller_cart, fake_stripe):
        cart = [dict(item) for item in two_seller_cart]
        cart[0]["discount"] = 100
        resp = client.post("/api/payments/create-payment-intent", json=_checkout_body(cart), headers=login(buyer))
        assert resp.status_code == 400

    def test_gateway_error(self, monkeypatch, client, login, buyer, two_seller_cart):
        def _fail(**kwargs):
            raise stripe.StripeError("Your card was declined.")

        monkeypatch.setattr(stripe.PaymentIntent, "create", _fail)
        resp = client.post("/api/payments/create-payment-intent", json=_checkout_body(two_seller_cart), headers=login(buyer))

        assert resp.status_code == 500
        assert resp.json["error"] == "Payment gateway error"
        assert resp.json["message"] == "Your card was declined."

    def test_gateway_not_configured(self, app, monkeypatch, client, login, buyer, two_seller_cart, fake_stripe):
        monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", None)
        resp = client.post("/api/payments/create-payment-intent", json=_checkout_body(two_seller_cart), headers=login(buyer))

        assert resp.status_code == 500
        assert fake_stripe == []


class TestPaymentStatus:

    def test_buyer_sees_payments(self, client, login, post_webhook, buyer, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_status_1", buyer.id, two_seller_cart))

        resp = client.get("/api/payments/status/pi_status_1", headers=login(buyer))

        assert resp.status_code == 200
        payments = resp.json["payments"]
        assert len(payments) == 2
        assert sorted(p["seller_amount_cents"] for p in payments) == [1350, 1800]
        assert all(p["order_number"].startswith("ORD-") for p in payments)
        assert all(p["order_status"] == "pending" for p in payments)

    def test_other_buyer_gets_404(self, client, login, post_webhook, buyer, other_buyer, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_status_2", buyer.id, two_seller_cart))

        resp = client.get("/api/payments/status/pi_status_2", headers=login(other_buyer))
        assert resp.status_code == 404

    def test_admin_sees_any(self, client, login, post_webhook, buyer, admin, two_seller_cart):
        post_webhook(payment_succeeded_event("pi_status_3", buyer.id, two_seller_cart))

        resp = client.get("/api/payments/status/pi_status_3", headers=login(admin))
        assert resp.status_code == 200

    def test_unknown_intent(self, client, login, buyer):
        resp = client.get("/api/payments/status/pi_unknown", headers=login(buyer))
        assert resp.status_code == 404


class TestIntentMetadata:

    def test_largest_cart_fits_gateway_limits(self):
        items = [
            CartItem(seller_id=MAX_ID, product_id=MAX_ID - n, unit_price_cents=MAX_PRICE_CENTS, quantity=MAX_QUANTITY)
            for n in range(MAX_CART_ITEMS)
        ]
        address = {field: "é" * MAX_ADDRESS_FIELD_LENGTH for field in SHIPPING_ADDRESS_FIELDS}

        metadata = build_intent_metadata(MAX_ID, items, address)

        assert len(metadata) <= METADATA_MAX_KEYS
        assert all(isinstance(value, str) for value in metadata.values())
        assert max(len(value) for value in metadata.values()) <= METADATA_VALUE_LIMIT
        assert int(metadata["cart_items_parts"]) > 1

    def test_split_cart_reassembled_by_webhook(self):
        items = [
            CartItem(seller_id=1, product_id=n, unit_price_cents=1000, quantity=1)
            for n in range(1, 21)
        ]
        metadata = build_intent_metadata(5, items, {"city": "Oakland"})
        assert int(metadata["cart_items_parts"]) > 1
        event = payment_succeeded_event("pi_big_cart", 5, [])
        event["data"]["object"]["metadata"] = metadata
        event["data"]["object"]["amount"] = event["data"]["object"]["amount_received"] = 20000

        parsed = parse_event(event)

        assert isinstance(parsed, PaymentSucceeded)
        assert list(parsed.cart_items) == items
        assert parsed.shipping_address == {"city": "Oakland"}

    def test_missing_chunk_rejected(self):
        items = [CartItem(seller_id=1, product_id=n, unit_price_cents=1000, quantity=1) for n in range(1, 20)]
        metadata = build_intent_metadata(5, items, {})
        del metadata["cart_items_1"]

        with pytest.raises(ValidationError):
            unpack_metadata_json(metadata, "cart_items")
