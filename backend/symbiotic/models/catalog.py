from __future__ import annotations

from ..extensions import db
from symbiotic.time_utils import to_utc_z


class SellerProfile(db.Model):
    """
    Selling account attached to a user.

    Payout account linkage: a seller can only request payouts once the
    external Stripe Connect onboarding has completed
    (stripe_account_id set AND stripe_onboarding_complete).
    """
    __tablename__ = "seller_profiles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    business_name = db.Column(db.String(255), nullable=False)
    business_type = db.Column(db.String(32), nullable=False, default="individual")

    stripe_account_id = db.Column(db.String(128), nullable=True)
    stripe_onboarding_complete = db.Column(db.Boolean, nullable=False, default=False)
    payout_method = db.Column(db.String(32), nullable=False, default="stripe_connect")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("seller_profile", uselist=False, lazy=True))

    @property
    def can_receive_payouts(self) -> bool:
        return bool(self.stripe_account_id) and bool(self.stripe_onboarding_complete)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "business_name": self.business_name,
            "business_type": self.business_type,
            "stripe_account_id": self.stripe_account_id,
            "stripe_onboarding_complete": self.stripe_onboarding_complete,
            "payout_method": self.payout_method,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Marketplace listing (green-energy products and general goods).

    `stock` is only ever changed through conditional UPDATEs
    (see order_service) so concurrent orders cannot drive it negative.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_seller_active", "seller_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="general")  # energy, general

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")

    stock = db.Column(db.Integer, nullable=False, default=0)
    sales_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    seller = db.relationship("SellerProfile", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} seller_id={self.seller_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "stock": self.stock,
            "sales_count": self.sales_count,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
