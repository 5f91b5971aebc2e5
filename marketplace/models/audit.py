"""Audit event model.

Records what the payment core did on behalf of a webhook or a buyer
(fulfillments, refunds, seller account syncs, guest claims).
"""

import uuid

from marketplace.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    purchase_id = db.Column(
        db.String(36), db.ForeignKey("purchases.id"), nullable=True
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for webhook-driven (system) actions
    action = db.Column(db.String(255), nullable=False)  # e.g. "purchase.fulfilled"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
