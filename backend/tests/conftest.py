"""
Pytest fixtures for marketplace backend tests.

Provides test database setup, member/seller/catalogue fixtures, signed
gateway webhook helpers, and the test client.
"""

import hashlib
import hmac
import json
import time

import pytest
from symbiotic import create_app
from symbiotic.extensions import db
from symbiotic.models import Product, SellerProfile, User
from symbiotic.models.auth import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER
from symbiotic.services.auth_service import hash_password
from symbiotic.services.gateway_events import pack_metadata_json


PASSWORD = "Password123!"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'STRIPE_SECRET_KEY': 'sk_test_dummy',
        'STRIPE_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _create_user(db_session, username: str, role: str) -> User:
    user = User(
        username=username,
        email=f"{username}@symbiotic.city",
        name=username.replace("_", " ").title(),
        password_hash=hash_password(PASSWORD),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


def _create_seller(db_session, username: str, business_name: str, linked: bool = True) -> SellerProfile:
    user = _create_user(db_session, username, ROLE_SELLER)
    profile = SellerProfile(
        user_id=user.id,
        business_name=business_name,
        stripe_account_id=f"acct_{username}" if linked else None,
        stripe_onboarding_complete=linked,
    )
    db_session.add(profile)
    db_session.commit()
    return profile


@pytest.fixture(scope='function')
def buyer(db_session):
    """Community member who buys."""
    return _create_user(db_session, "buyer_one", ROLE_BUYER)


@pytest.fixture(scope='function')
def other_buyer(db_session):
    return _create_user(db_session, "buyer_two", ROLE_BUYER)


@pytest.fixture(scope='function')
def admin(db_session):
    return _create_user(db_session, "admin_one", ROLE_ADMIN)


@pytest.fixture(scope='function')
def seller_a(db_session):
    """Seller A with a completed payout account."""
    return _create_seller(db_session, "seller_a", "Solar Collective")


@pytest.fixture(scope='function')
def seller_b(db_session):
    """Seller B with a completed payout account."""
    return _create_seller(db_session, "seller_b", "Compost Works")


@pytest.fixture(scope='function')
def unlinked_seller(db_session):
    """Seller who has not finished payout onboarding."""
    return _create_seller(db_session, "seller_c", "Bike Repair", linked=False)


@pytest.fixture(scope='function')
def product_p1(db_session, seller_a):
    """Product sold by seller A at 1000 cents."""
    product = Product(seller_id=seller_a.id, name="Solar Panel Kit", category="energy", price_cents=1000, stock=10)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_p2(db_session, seller_b):
    """Product sold by seller B at 500 cents."""
    product = Product(seller_id=seller_b.id, name="Compost Bin", category="general", price_cents=500, stock=10)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def two_seller_cart(seller_a, seller_b, product_p1, product_p2):
    """Cart spanning two sellers: 2 x 1000 from A, 3 x 500 from B (3500 total)."""
    return [
        {"seller_id": seller_a.id, "product_id": product_p1.id, "unit_price_cents": 1000, "quantity": 2},
        {"seller_id": seller_b.id, "product_id": product_p2.id, "unit_price_cents": 500, "quantity": 3},
    ]


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def login(client):
    """Return a callable: login(user) -> Authorization headers."""
    def _login(user: User) -> dict:
        token = get_auth_token(client, user.username)
        assert token, f"login failed for {user.username}"
        return auth_headers(token)
    return _login


# =============================================================================
# GATEWAY WEBHOOK HELPERS
# =============================================================================

def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a stripe-signature header (t=<ts>,v1=<HMAC-SHA256 of "<ts>.<payload>">)."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def payment_succeeded_event(intent_id: str, buyer_id: int, cart: list, amount: int | None = None,
                            currency: str = "usd", shipping_address: dict | None = None) -> dict:
    if amount is None:
        amount = sum(item["unit_price_cents"] * item["quantity"] for item in cart)
    return {
        "id": f"evt_{intent_id}",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount,
                "currency": currency,
                "payment_method_types": ["card"],
                "metadata": {
                    "buyer_id": str(buyer_id),
                    **pack_metadata_json("cart_items", cart),
                    **pack_metadata_json("shipping_address", shipping_address or {"city": "Oakland", "country": "US"}),
                },
            }
        },
    }


def payment_failed_event(intent_id: str, message: str = "Your card was declined.") -> dict:
    return {
        "id": f"evt_failed_{intent_id}",
        "type": "payment_intent.payment_failed",
        "data": {
            "object": {
                "id": intent_id,
                "object": "payment_intent",
                "last_payment_error": {"code": "card_declined", "message": message},
            }
        },
    }


def charge_refunded_event(intent_id: str, reason: str | None = None, refunded: bool = True,
                          amount_refunded: int = 0) -> dict:
    refunds = [{"id": f"re_{intent_id}", "reason": reason}] if reason else []
    return {
        "id": f"evt_refund_{intent_id}",
        "type": "charge.refunded",
        "data": {
            "object": {
                "id": f"ch_{intent_id}",
                "object": "charge",
                "payment_intent": intent_id,
                "amount_refunded": amount_refunded,
                "refunded": refunded,
                "refunds": {"data": refunds},
            }
        },
    }


@pytest.fixture(scope='function')
def post_webhook(client):
    """Return a callable: post_webhook(event_dict, signature=None) -> response."""
    def _post(event: dict, signature: str | None = None, secret: str = WEBHOOK_SECRET):
        payload = json.dumps(event)
        headers = {"Content-Type": "application/json"}
        headers["stripe-signature"] = signature if signature is not None else sign_payload(payload, secret)
        return client.post("/api/payments/webhook", data=payload, headers=headers)
    return _post
