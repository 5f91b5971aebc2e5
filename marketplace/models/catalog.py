"""Catalog models read by checkout validation.

- Track: the authoritative listing (price + seller). Client carts are
  checked against it before a checkout session is created.
- SellerAccount: a seller's Stripe Connect payout destination. Synced from
  account.updated webhooks; charges_enabled gates whether a seller can be
  paid at all.
"""

import uuid

from marketplace.extensions import db


class Track(db.Model):
    __tablename__ = "tracks"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    title = db.Column(db.String(255), nullable=False)
    artist_name = db.Column(db.String(255), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    is_published = db.Column(db.Boolean, default=True, nullable=False)

    # Stripe catalog objects, created lazily at first checkout and reused
    # while the listing price stays the same.
    stripe_product_id = db.Column(db.String(255), nullable=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    stripe_price_amount = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User", back_populates="tracks")

    def __repr__(self):
        return f"<Track {self.title} ({self.price_cents})>"


class SellerAccount(db.Model):
    __tablename__ = "seller_accounts"

    # -- Valid statuses (derived from the Connect account flags) --
    STATUSES = ["pending_onboarding", "onboarding_incomplete", "active"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seller_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), unique=True, nullable=False
    )
    stripe_account_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "acct_1Abc..."
    status = db.Column(
        db.String(50), default="pending_onboarding", nullable=False
    )  # pending_onboarding | onboarding_incomplete | active
    charges_enabled = db.Column(db.Boolean, default=False, nullable=False)
    payouts_enabled = db.Column(db.Boolean, default=False, nullable=False)
    details_submitted = db.Column(db.Boolean, default=False, nullable=False)
    business_name = db.Column(db.String(255), nullable=True)
    country = db.Column(db.String(2), nullable=True)
    onboarding_completed_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User", back_populates="seller_account")

    @property
    def is_payable(self):
        return bool(self.stripe_account_id) and bool(self.charges_enabled)

    def __repr__(self):
        return f"<SellerAccount {self.stripe_account_id} ({self.status})>"
