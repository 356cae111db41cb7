from __future__ import annotations

from ..extensions import db
from symbiotic.time_utils import to_utc_z


class Payout(db.Model):
    """
    Batched transfer of accumulated seller proceeds.

    A Payout is a computed snapshot: it references Orders/Payments through
    PayoutOrder rows but never mutates them.

    STATUS: pending -> processing -> paid, or pending|processing -> failed.
    """
    __tablename__ = "payouts"
    __table_args__ = (
        db.Index("ix_payouts_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payout_method = db.Column(db.String(32), nullable=False, default="stripe_connect")

    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    seller = db.relationship("SellerProfile", backref=db.backref("payouts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def orders_included(self) -> list[int]:
        return [item.order_id for item in self.items]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "payout_method": self.payout_method,
            "orders_included": self.orders_included,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "failed_at": to_utc_z(self.failed_at) if self.failed_at else None,
            "failure_reason": self.failure_reason,
        }


class PayoutOrder(db.Model):
    """
    One order settled by a payout.

    CLAIM: claim_order_id mirrors order_id while the payout is pending,
    processing or paid, and is NULL once the payout failed. The unique
    constraint makes a second concurrent claim on the same order fail at
    the storage layer (NULLs never collide).
    """
    __tablename__ = "payout_orders"
    __table_args__ = (
        db.UniqueConstraint("payout_id", "order_id", name="uq_payout_orders_payout_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payout_id = db.Column(db.Integer, db.ForeignKey("payouts.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    claim_order_id = db.Column(db.Integer, nullable=True, unique=True)
    seller_amount_cents = db.Column(db.Integer, nullable=False)

    payout = db.relationship(
        "Payout",
        backref=db.backref("items", lazy=True, order_by="PayoutOrder.order_id"),
    )
    order = db.relationship("Order")

    def to_dict(self) -> dict:
        return {
            "payout_id": self.payout_id,
            "order_id": self.order_id,
            "seller_amount_cents": self.seller_amount_cents,
            "active": self.claim_order_id is not None,
        }
