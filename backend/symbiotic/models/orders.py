from __future__ import annotations

from ..extensions import db
from symbiotic.time_utils import to_utc_z


class Order(db.Model):
    """
    One seller's portion of a checkout.

    WHY: A cart spanning several sellers settles into one Order per seller,
    each with its own totals, fulfillment status and payment split.

    STATUS vs PAYMENT_STATUS: fulfillment and payment are tracked separately
    because a refund can arrive after delivery.

    INVARIANT: total_cents = subtotal + shipping + tax - discount.
    Orders are never deleted; cancelled/refunded are soft terminal states.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_seller_status_created", "seller_id", "status", "created_at"),
        db.Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, globally unique (e.g., "ORD-1760000000000-K3J9QX2ZP")
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    # Money (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="usd")

    shipping_address = db.Column(db.JSON, nullable=True)

    # Gateway intent that settled this order (shared by every seller's order in a checkout)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)

    # Seller-supplied fulfillment details
    tracking_number = db.Column(db.String(128), nullable=True)
    seller_notes = db.Column(db.Text, nullable=True)

    refund_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    buyer = db.relationship("User", backref=db.backref("orders", lazy=True))
    seller = db.relationship("SellerProfile", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = True, include_timeline: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "shipping_address": self.shipping_address,
            "payment_intent_id": self.payment_intent_id,
            "tracking_number": self.tracking_number,
            "seller_notes": self.seller_notes,
            "refund_reason": self.refund_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        if include_timeline:
            data["timeline"] = [event.to_dict() for event in self.timeline]
        return data


class OrderLine(db.Model):
    """
    Line item snapshot taken at order creation.

    Prices here never follow later catalogue changes.
    """
    __tablename__ = "order_lines"
    __table_args__ = (
        db.UniqueConstraint("order_id", "position", name="uq_order_lines_order_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship(
        "Order",
        backref=db.backref("lines", lazy=True, order_by="OrderLine.position"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "position": self.position,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class OrderEvent(db.Model):
    """
    Append-only order timeline.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "order_events"
    __table_args__ = (
        db.Index("ix_order_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("timeline", lazy=True, order_by="OrderEvent.id"),
    )

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": to_utc_z(self.occurred_at),
            "note": self.note,
            "actor_user_id": self.actor_user_id,
        }


class Payment(db.Model):
    """
    Gateway settlement record for one Order.

    IDEMPOTENCY: (payment_intent_id, seller_id) is unique. A checkout
    intent settles one Order per seller; a redelivered success event
    collides here instead of creating a second ledger entry.

    SPLIT: platform_fee_cents + seller_amount_cents = amount_cents.
    platform_fee_bps records the rate used so historical orders keep it.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_intent_id", "seller_id", name="uq_payments_intent_seller"),
        db.CheckConstraint(
            "platform_fee_cents + seller_amount_cents = amount_cents",
            name="ck_payments_split_conserves_amount",
        ),
        db.Index("ix_payments_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    payment_intent_id = db.Column(db.String(255), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="card")
    gateway = db.Column(db.String(32), nullable=False, default="stripe")

    status = db.Column(db.String(16), nullable=False, default="succeeded", index=True)  # succeeded, failed, refunded

    platform_fee_cents = db.Column(db.Integer, nullable=False)
    seller_amount_cents = db.Column(db.Integer, nullable=False)
    platform_fee_bps = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payment", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "seller_id": self.seller_id,
            "payment_intent_id": self.payment_intent_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "gateway": self.gateway,
            "status": self.status,
            "platform_fee_cents": self.platform_fee_cents,
            "seller_amount_cents": self.seller_amount_cents,
            "platform_fee_bps": self.platform_fee_bps,
            "created_at": to_utc_z(self.created_at),
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
        }
