"""Stripe service — webhook verification and event dispatch.

Responsible for:
- Verifying webhook signatures (HMAC, constant-time compare, replay window)
- Idempotency via the webhook_events ledger (event_ledger)
- Dispatching each recognised event kind to its handler
- Committing handler writes and the "processed" status together, or
  rolling back and recording "failed" so Stripe redelivers
- Replaying failed events from their stored payload
"""

import enum
import json
import logging

import stripe
from flask import current_app

from marketplace.errors import ConsistencyError, SignatureError
from marketplace.extensions import db
from marketplace.services import event_ledger
from marketplace.services.event_ledger import Claim
from marketplace.services.fulfillment_service import (
    apply_charge_refund,
    fulfill_checkout_session,
    sync_seller_account,
)

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    """Webhook event types this service acts on.

    Anything else maps to UNHANDLED, which is acknowledged and recorded as
    processed without side effects.
    """

    CHECKOUT_COMPLETED = "checkout.session.completed"
    ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHARGE_REFUNDED = "charge.refunded"
    ACCOUNT_UPDATED = "account.updated"
    UNHANDLED = "unhandled"

    @classmethod
    def from_event_type(cls, event_type):
        try:
            kind = cls(event_type)
        except ValueError:
            return cls.UNHANDLED
        return kind


# ──────────────────────────────────────────────
# Signature verification
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header and construct the event.

    Signatures older than STRIPE_WEBHOOK_TOLERANCE seconds are rejected.

    Returns the verified event as plain JSON (dicts and lists), which is
    also the shape stored in the ledger and used on replay.
    Raises SignatureError on a bad, expired, or unparsable delivery.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    tolerance = current_app.config["STRIPE_WEBHOOK_TOLERANCE"]
    try:
        stripe.Webhook.construct_event(
            payload, sig_header, webhook_secret, tolerance=tolerance
        )
        return json.loads(payload)
    except stripe.SignatureVerificationError as e:
        raise SignatureError(str(e)) from e
    except ValueError as e:
        # Signature fine, body not JSON
        raise SignatureError(f"Invalid payload: {e}") from e


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

def _dispatch(kind, event):
    obj = event["data"]["object"]

    if kind in (EventKind.CHECKOUT_COMPLETED, EventKind.ASYNC_PAYMENT_SUCCEEDED):
        fulfill_checkout_session(obj)
    elif kind is EventKind.CHARGE_REFUNDED:
        apply_charge_refund(obj)
    elif kind is EventKind.ACCOUNT_UPDATED:
        sync_seller_account(obj)
    else:
        logger.info(f"Unhandled webhook event type {event['type']} ({event['id']}), acknowledging")


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: a "processed" event is skipped; otherwise the event is
    claimed in the ledger before its handler runs.

    Returns (success: bool, message: str). message is one of
    "processed", "already_processed", "already_fulfilled", "in_progress",
    or the handler's error text.
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    if event_ledger.is_duplicate(event_id):
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    claim = event_ledger.claim(event)
    if claim is Claim.DUPLICATE:
        logger.info(f"Webhook event {event_id} processed concurrently, skipping")
        return True, "already_processed"
    if claim is Claim.IN_FLIGHT:
        logger.info(f"Webhook event {event_id} is being processed by another worker")
        return False, "in_progress"

    kind = EventKind.from_event_type(event_type)

    # --- Handler + terminal status in one transaction ---
    try:
        _dispatch(kind, event)
        event_ledger.record(event_id, "processed")
        db.session.commit()
    except ConsistencyError as e:
        db.session.rollback()
        logger.info(f"Webhook event {event_id} already applied: {e}")
        event_ledger.record(event_id, "processed")
        db.session.commit()
        return True, "already_fulfilled"
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        db.session.rollback()
        event_ledger.record(event_id, "failed", error=str(e) or e.__class__.__name__)
        db.session.commit()
        return False, str(e) or e.__class__.__name__

    logger.info(f"Processed webhook event {event_id} ({event_type})")
    return True, "processed"


def replay_failed_events(limit=None, dry_run=False):
    """Re-run failed events from the payload stored in the ledger.

    The payload was signature-checked when it first arrived.
    Returns a list of (event_id, success, message).
    """
    # Snapshot first; handle_webhook_event commits and expires the rows
    pending = [
        (row.stripe_event_id, row.payload)
        for row in event_ledger.failed_events(limit=limit)
    ]

    results = []
    for event_id, payload in pending:
        if dry_run:
            results.append((event_id, None, "dry_run"))
            continue
        success, message = handle_webhook_event(payload)
        results.append((event_id, success, message))
    return results
