"""User model.

Accounts are owned by the external identity provider; this row mirrors the
provider's user id so purchases, grants, and seller records can point at it.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from marketplace.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(255))
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    tracks = db.relationship("Track", back_populates="seller", lazy="dynamic")
    seller_account = db.relationship(
        "SellerAccount", back_populates="seller", uselist=False
    )

    def __repr__(self):
        return f"<User {self.email}>"
