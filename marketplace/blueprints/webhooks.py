"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from marketplace.errors import SignatureError
from marketplace.services.stripe_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via webhook_events table)
    4. Status code tells Stripe whether to redeliver:
         200  processed, duplicate, or already applied
         400  no signature header
         401  signature rejected (no ledger write)
         409  same event currently being processed elsewhere
         500  handler failed (ledger row marked failed)

    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except SignatureError as e:
        logger.warning(
            f"Webhook signature verification failed from {request.remote_addr}: {e}"
        )
        return jsonify({"error": "Invalid signature"}), 401

    # --- Process event (idempotent) ---
    success, message = handle_webhook_event(event)

    if success:
        return jsonify({"status": message}), 200
    if message == "in_progress":
        return jsonify({"error": message}), 409

    logger.error(f"Webhook processing failed: {message}")
    return jsonify({"error": message}), 500
