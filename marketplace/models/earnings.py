"""Earnings ledger model.

One row per (purchase, seller, track). This is the seller-facing
accounting record that payouts are computed from; moving the money is
somebody else's job. settlement tells that process whether Stripe already
routed the funds (destination charge) or a transfer is still owed.
"""

import uuid

from marketplace.extensions import db


class EarningsLedgerEntry(db.Model):
    __tablename__ = "earnings_ledger"
    __table_args__ = (
        db.UniqueConstraint(
            "purchase_id", "seller_id", "track_id",
            name="uq_earnings_ledger_purchase_seller_track",
        ),
    )

    STATUSES = ["pending", "refunded"]
    SETTLEMENTS = ["destination", "deferred"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    purchase_id = db.Column(
        db.String(36), db.ForeignKey("purchases.id"), nullable=False, index=True
    )
    seller_id = db.Column(db.String(36), nullable=False, index=True)
    track_id = db.Column(
        db.String(36), db.ForeignKey("tracks.id"), nullable=False
    )
    gross_cents = db.Column(db.Integer, nullable=False)
    platform_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    processing_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    seller_earnings_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), default="USD", nullable=False)
    settlement = db.Column(
        db.String(50), default="destination", nullable=False
    )  # destination | deferred
    status = db.Column(
        db.String(50), default="pending", nullable=False
    )  # pending | refunded
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    purchase = db.relationship("Purchase", back_populates="earnings_entries")

    def __repr__(self):
        return (
            f"<EarningsLedgerEntry seller={self.seller_id} "
            f"net={self.seller_earnings_cents} ({self.status})>"
        )
