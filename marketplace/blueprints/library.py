"""Library blueprint — /api/library/*

Routes:
- GET  /api/library/tracks/<track_id>/access  — can this buyer play the track?
- POST /api/library/claim                      — attach guest purchases to the
                                                 signed-in account
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from marketplace.extensions import db
from marketplace.services.access_service import (
    claim_guest_purchases,
    has_track_access,
)

library_bp = Blueprint("library", __name__, url_prefix="/api/library")


@library_bp.route("/tracks/<track_id>/access")
def track_access(track_id):
    """Guests identify themselves with ?guestSessionId=..."""
    user_id = current_user.id if current_user.is_authenticated else None
    guest_session_id = request.args.get("guestSessionId") or None

    allowed = has_track_access(
        track_id, user_id=user_id, guest_session_id=guest_session_id
    )
    return jsonify({"trackId": track_id, "hasAccess": bool(allowed)}), 200


@library_bp.route("/claim", methods=["POST"])
@login_required
def claim():
    data = request.get_json(silent=True)
    raw = data.get("guestSessionId") if isinstance(data, dict) else None
    guest_session_id = raw.strip() if isinstance(raw, str) else ""
    if not guest_session_id:
        return jsonify({"error": "guestSessionId is required."}), 400

    claimed = claim_guest_purchases(guest_session_id, current_user.id)
    db.session.commit()
    return jsonify({"claimed": claimed}), 200
