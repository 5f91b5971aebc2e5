"""Access service — who may stream a track, and guest purchase claims.

An unrevoked TrackAccess row is the authoritative "yes". Sellers always
have access to their own tracks.

Functions flush but do NOT commit — the caller commits.
"""

import logging

from sqlalchemy import or_

from marketplace.extensions import db
from marketplace.models.catalog import Track
from marketplace.models.purchase import Purchase, TrackAccess
from marketplace.services.fulfillment_service import log_payment_audit

logger = logging.getLogger(__name__)


def has_track_access(track_id, user_id=None, guest_session_id=None):
    """Return True if the user (or guest session) may access the track."""
    if not user_id and not guest_session_id:
        return False

    if user_id:
        track = db.session.get(Track, track_id)
        if track is not None and track.seller_id == user_id:
            return True

    holders = []
    if user_id:
        holders.append(TrackAccess.user_id == user_id)
    if guest_session_id:
        holders.append(TrackAccess.guest_session_id == guest_session_id)

    return db.session.query(
        TrackAccess.query
        .filter(TrackAccess.track_id == track_id)
        .filter(TrackAccess.revoked_at.is_(None))
        .filter(or_(*holders))
        .exists()
    ).scalar()


def claim_guest_purchases(guest_session_id, user_id):
    """Attach a guest's purchases and grants to a signed-in account.

    Only rows without an owner are claimed, so a guest key cannot be used
    to take over another account's purchases.

    Returns the number of purchases claimed.
    """
    if not guest_session_id:
        raise ValueError("guest_session_id is required.")

    purchases = Purchase.query.filter_by(
        guest_session_id=guest_session_id, user_id=None
    ).all()
    if not purchases:
        return 0

    purchase_ids = [p.id for p in purchases]
    for purchase in purchases:
        purchase.user_id = user_id

    grants = (
        TrackAccess.query
        .filter(TrackAccess.purchase_id.in_(purchase_ids))
        .filter(TrackAccess.user_id.is_(None))
        .update({"user_id": user_id}, synchronize_session="fetch")
    )
    db.session.flush()

    log_payment_audit("access.claimed", metadata={
        "guest_session_id": guest_session_id,
        "purchase_ids": purchase_ids,
        "grants": grants,
    }, actor_user_id=user_id)

    logger.info(
        f"User {user_id} claimed {len(purchases)} guest purchases ({grants} grants)"
    )
    return len(purchases)
