from __future__ import annotations

from ..extensions import db
from symbiotic.time_utils import to_utc_z


class Notification(db.Model):
    """
    Outbox row for the email-notification collaborator.

    Written in the same transaction as the order/payment change it reports,
    so a rolled-back batch never leaves a stray email behind. The mail
    worker (external) picks up rows with sent_at IS NULL.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_unsent", "sent_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    kind = db.Column(db.String(64), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipient_user_id": self.recipient_user_id,
            "kind": self.kind,
            "order_id": self.order_id,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
        }
