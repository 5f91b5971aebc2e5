"""Checkout blueprint — /api/checkout/*

Public JSON API used by the web and mobile clients. Guest checkout is
allowed, so the blueprint is CSRF-exempt (see create_app()).

Routes:
- POST /api/checkout/session               — validate cart, create Stripe session
- GET  /api/checkout/session/<session_id>  — poll session + fulfillment state
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from marketplace.errors import CheckoutCreationError, ValidationError
from marketplace.extensions import limiter
from marketplace.services.cart_service import parse_cart
from marketplace.services.checkout_service import (
    create_checkout_session,
    get_checkout_status,
)

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")

OPTIONAL_STRING_FIELDS = ("guestSessionId", "successUrl", "cancelUrl", "customerEmail")


# ──────────────────────────────────────────────
# POST /api/checkout/session
# ──────────────────────────────────────────────

@checkout_bp.route("/session", methods=["POST"])
@limiter.limit("20 per minute")
def create_session():
    """Create a Stripe Checkout Session for the submitted cart.

    Body: { items: [...], successUrl?, cancelUrl?, customerEmail?,
            guestSessionId? }

    Returns: { sessionId, url, expiresAt, guestSessionId } or
             { error, code, details? } with 400 on validation failure.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid request.", "code": "invalid_request"}), 400

    for field in OPTIONAL_STRING_FIELDS:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            return jsonify({
                "error": f"{field} must be a string.",
                "code": "invalid_request",
                "details": {"field": field},
            }), 400

    user_id = current_user.id if current_user.is_authenticated else None

    try:
        items = parse_cart(data, current_app.config["CHECKOUT_MAX_ITEMS"])
        result = create_checkout_session(
            items,
            user_id=user_id,
            guest_session_id=(data.get("guestSessionId") or "").strip() or None,
            success_url=data.get("successUrl"),
            cancel_url=data.get("cancelUrl"),
            customer_email=data.get("customerEmail"),
        )
    except ValidationError as e:
        logger.info(f"Checkout rejected ({e.code}): {e.message}")
        return jsonify(e.to_dict()), 400
    except CheckoutCreationError as e:
        return jsonify({"error": str(e), "code": "checkout_failed"}), 502

    return jsonify(result), 200


# ──────────────────────────────────────────────
# GET /api/checkout/session/<session_id>
# ──────────────────────────────────────────────

@checkout_bp.route("/session/<session_id>")
def session_status(session_id):
    """JSON endpoint polled by the success page until the webhook has
    fulfilled the purchase."""
    try:
        status = get_checkout_status(session_id)
    except stripe.InvalidRequestError:
        return jsonify({"error": "Checkout session not found"}), 404
    except stripe.StripeError as e:
        logger.warning(f"Failed to retrieve checkout session {session_id}: {e}")
        return jsonify({"error": "Could not load checkout session"}), 502

    return jsonify(status), 200
