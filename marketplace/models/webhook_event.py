"""Webhook event model (idempotency ledger).

Every Stripe webhook event is recorded by its event ID before its handler
runs. The row moves processing -> processed | failed and is never deleted.
Only a "processed" row makes a redelivery a no-op; a "failed" row, or a
"processing" row left behind by a crashed worker, is picked up again.
"""

import uuid

from marketplace.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    STATUSES = ["processing", "processed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    payload = db.Column(db.JSON, nullable=False)
    status = db.Column(
        db.String(50), default="processing", nullable=False
    )  # processing | processed | failed
    error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    processing_started_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<WebhookEvent {self.stripe_event_id} ({self.status})>"
