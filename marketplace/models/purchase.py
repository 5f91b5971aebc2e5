"""Purchase models.

- Purchase: one per completed Stripe Checkout Session. Unique on the
  checkout session id, which is the backstop against double fulfillment.
- PurchaseItem: one row per cart line, written with its parent and never
  changed afterwards.
- TrackAccess: the grant that lets a buyer (user id, or guest session id)
  stream a purchased track. A full refund sets revoked_at; rows are never
  deleted.
"""

import uuid

from marketplace.extensions import db


class Purchase(db.Model):
    __tablename__ = "purchases"

    # -- Valid statuses --
    STATUSES = ["processing", "succeeded", "refunded"]

    # -- Statuses only move forward --
    VALID_TRANSITIONS = {
        "processing": ["succeeded"],
        "succeeded": ["refunded"],
    }

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True, index=True
    )  # None for guest checkout
    guest_session_id = db.Column(
        db.String(255), nullable=False, index=True
    )  # access key for guests; kept for signed-in buyers too
    stripe_payment_intent_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "pi_1Abc..."
    stripe_checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1B2..."
    amount_total = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), default="USD", nullable=False)
    status = db.Column(
        db.String(50), default="processing", nullable=False
    )  # processing | succeeded | refunded
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_amount = db.Column(db.Integer, nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # copy of the checkout session metadata
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    items = db.relationship(
        "PurchaseItem", back_populates="purchase", lazy="dynamic"
    )
    access_grants = db.relationship(
        "TrackAccess", back_populates="purchase", lazy="dynamic"
    )
    earnings_entries = db.relationship(
        "EarningsLedgerEntry", back_populates="purchase", lazy="dynamic"
    )

    def can_transition(self, new_status):
        return new_status in self.VALID_TRANSITIONS.get(self.status, [])

    def __repr__(self):
        return f"<Purchase {self.stripe_checkout_session_id} ({self.status})>"


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint(
            "platform_fee + seller_earnings = price",
            name="ck_purchase_items_split",
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    purchase_id = db.Column(
        db.String(36), db.ForeignKey("purchases.id"), nullable=False, index=True
    )
    track_id = db.Column(
        db.String(36), db.ForeignKey("tracks.id"), nullable=False, index=True
    )
    seller_id = db.Column(db.String(36), nullable=False, index=True)
    price = db.Column(db.Integer, nullable=False)
    platform_fee = db.Column(db.Integer, nullable=False)
    seller_earnings = db.Column(db.Integer, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    purchase = db.relationship("Purchase", back_populates="items")

    def __repr__(self):
        return f"<PurchaseItem track={self.track_id} price={self.price}>"


class TrackAccess(db.Model):
    __tablename__ = "track_access"

    ACCESS_TYPES = ["purchase"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True, index=True
    )
    guest_session_id = db.Column(db.String(255), nullable=False, index=True)
    track_id = db.Column(
        db.String(36), db.ForeignKey("tracks.id"), nullable=False, index=True
    )
    purchase_id = db.Column(
        db.String(36), db.ForeignKey("purchases.id"), nullable=False, index=True
    )
    access_type = db.Column(
        db.String(50), default="purchase", nullable=False
    )
    granted_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Relationships ---
    purchase = db.relationship("Purchase", back_populates="access_grants")

    @property
    def is_active(self):
        return self.revoked_at is None

    def __repr__(self):
        holder = self.user_id or self.guest_session_id
        return f"<TrackAccess {holder} -> {self.track_id}>"
