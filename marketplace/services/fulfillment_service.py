"""Fulfillment service — apply verified Stripe events to purchase state.

Responsible for:
- checkout.session.completed: Purchase + PurchaseItems + TrackAccess grants
  + EarningsLedgerEntries, rebuilt only from the session's own metadata
- charge.refunded: refund bookkeeping; full refunds revoke access and
  reverse ledger entries
- account.updated: keep seller payout eligibility in sync

Functions flush but do NOT commit — the webhook dispatcher commits, so each
event's writes land in a single transaction together with its ledger
status.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from marketplace.errors import ConsistencyError, MetadataError, PurchaseNotFoundError
from marketplace.extensions import db
from marketplace.models.audit import AuditEvent
from marketplace.models.catalog import SellerAccount
from marketplace.models.earnings import EarningsLedgerEntry
from marketplace.models.purchase import Purchase, PurchaseItem, TrackAccess
from marketplace.services.fees import decode_item_snapshot, processing_fee

logger = logging.getLogger(__name__)

# Checkout sessions that have actually collected the money
PAID_STATUSES = ("paid", "no_payment_required")


def log_payment_audit(action, purchase_id=None, metadata=None, actor_user_id=None):
    """Log a payment-related audit event.

    Actor is None for webhook-driven (system) actions.
    """
    event = AuditEvent(
        purchase_id=purchase_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()


def _decode_cart(metadata):
    """Rebuild the cart snapshots from checkout session metadata.

    Raises MetadataError if the count or any item is missing or malformed.
    """
    try:
        item_count = int(metadata.get("itemCount", "0"))
    except (TypeError, ValueError):
        raise MetadataError(f"Invalid itemCount {metadata.get('itemCount')!r}")

    if item_count <= 0:
        raise MetadataError("Checkout session metadata has no items")

    snapshots = []
    for index in range(item_count):
        raw = metadata.get(f"item_{index}")
        if raw is None:
            raise MetadataError(f"Checkout session metadata missing item_{index}")
        try:
            snapshots.append(decode_item_snapshot(raw))
        except ValueError as e:
            raise MetadataError(f"item_{index}: {e}") from e
    return snapshots


def _buyer_identity(session, metadata):
    """Return (user_id or None, guest access key)."""
    raw_user_id = metadata.get("userId")
    user_id = None if raw_user_id in (None, "", "guest") else raw_user_id

    guest_session_id = (
        metadata.get("guestSessionId")
        or session.get("client_reference_id")
        or f"session_{session['id']}"
    )
    return user_id, guest_session_id


# ──────────────────────────────────────────────
# checkout.session.completed
# ──────────────────────────────────────────────

def fulfill_checkout_session(session):
    """Materialize the purchase for a paid checkout session.

    Order of writes: purchase (processing) -> per item: PurchaseItem,
    TrackAccess, EarningsLedgerEntry -> purchase flipped to succeeded.

    Returns the Purchase, or None if the session is not paid yet.
    Raises ConsistencyError if a concurrent run inserted the purchase first;
    any other IntegrityError (e.g. an unknown buyer id) propagates.
    """
    session_id = session["id"]

    if session.get("payment_status") not in PAID_STATUSES:
        logger.info(
            f"Checkout session {session_id} not paid yet "
            f"(payment_status={session.get('payment_status')}), skipping"
        )
        return None

    # --- Purchase-level idempotency (backstop behind the event ledger) ---
    existing = Purchase.query.filter_by(
        stripe_checkout_session_id=session_id
    ).first()
    if existing:
        logger.info(f"Purchase already exists for checkout session {session_id}, skipping")
        return existing

    metadata = dict(session.get("metadata") or {})
    snapshots = _decode_cart(metadata)
    user_id, guest_session_id = _buyer_identity(session, metadata)

    multi_seller = metadata.get("multiSeller") == "true"
    settlement = "deferred" if multi_seller else "destination"
    currency = (session.get("currency") or current_app.config["CHECKOUT_CURRENCY"]).upper()
    amount_total = session.get("amount_total")
    if amount_total is None:
        amount_total = sum(s["price"] for s in snapshots)

    purchase = Purchase(
        user_id=user_id,
        guest_session_id=guest_session_id,
        stripe_payment_intent_id=session.get("payment_intent"),
        stripe_checkout_session_id=session_id,
        amount_total=amount_total,
        currency=currency,
        status="processing",
        metadata_=metadata,
    )
    db.session.add(purchase)
    try:
        db.session.flush()
    except IntegrityError as e:
        db.session.rollback()
        # Only a purchase row for this session means the work is done;
        # any other constraint failure must surface so Stripe retries.
        if Purchase.query.filter_by(stripe_checkout_session_id=session_id).first():
            raise ConsistencyError(
                f"Purchase for checkout session {session_id} was created concurrently"
            ) from e
        raise

    fee_percent = current_app.config["STRIPE_FEE_PERCENT"]
    fee_fixed = current_app.config["STRIPE_FEE_FIXED_CENTS"]

    for snapshot in snapshots:
        db.session.add(PurchaseItem(
            purchase_id=purchase.id,
            track_id=snapshot["trackId"],
            seller_id=snapshot["sellerId"],
            price=snapshot["price"],
            platform_fee=snapshot["platformFee"],
            seller_earnings=snapshot["sellerEarnings"],
        ))

        db.session.add(TrackAccess(
            user_id=user_id,
            guest_session_id=guest_session_id,
            track_id=snapshot["trackId"],
            purchase_id=purchase.id,
            access_type="purchase",
        ))

        db.session.add(EarningsLedgerEntry(
            purchase_id=purchase.id,
            seller_id=snapshot["sellerId"],
            track_id=snapshot["trackId"],
            gross_cents=snapshot["price"],
            platform_fee_cents=snapshot["platformFee"],
            processing_fee_cents=processing_fee(snapshot["price"], fee_percent, fee_fixed),
            seller_earnings_cents=snapshot["sellerEarnings"],
            currency=currency,
            settlement=settlement,
            status="pending",
        ))

    db.session.flush()

    # Items and grants exist before anyone can see "succeeded"
    purchase.status = "succeeded"
    purchase.completed_at = datetime.now(timezone.utc)
    db.session.flush()

    log_payment_audit("purchase.fulfilled", purchase.id, {
        "stripe_checkout_session_id": session_id,
        "item_count": len(snapshots),
        "amount_total": amount_total,
        "settlement": settlement,
        "guest": user_id is None,
    })

    logger.info(
        f"Fulfilled checkout session {session_id}: purchase {purchase.id}, "
        f"{len(snapshots)} items"
    )
    return purchase


# ──────────────────────────────────────────────
# charge.refunded
# ──────────────────────────────────────────────

def apply_charge_refund(charge):
    """Record a refund against the purchase paid by this charge.

    Stripe reports amount_refunded as the charge's running total, so a
    series of partial refunds that adds up to the full amount is treated
    as a full refund once the total reaches the charged amount.

    Raises PurchaseNotFoundError if the purchase is not there yet; the
    completion event may still be in flight, so Stripe should retry.
    """
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        logger.warning(f"charge.refunded: charge {charge.get('id')} has no payment intent, ignoring")
        return None

    purchase = Purchase.query.filter_by(
        stripe_payment_intent_id=payment_intent_id
    ).first()
    if purchase is None:
        raise PurchaseNotFoundError(
            f"No purchase for payment intent {payment_intent_id}"
        )

    if purchase.status == "refunded":
        logger.info(f"Purchase {purchase.id} already refunded, skipping")
        return purchase

    amount = charge.get("amount") or 0
    amount_refunded = charge.get("amount_refunded") or 0
    now = datetime.now(timezone.utc)

    # Never move the recorded refund total backwards (out-of-order events)
    purchase.refund_amount = max(purchase.refund_amount or 0, amount_refunded)
    purchase.refunded_at = now

    is_full_refund = amount > 0 and amount_refunded >= amount

    if not is_full_refund:
        db.session.flush()
        log_payment_audit("purchase.partially_refunded", purchase.id, {
            "amount": amount,
            "amount_refunded": amount_refunded,
        })
        logger.info(
            f"Partial refund on purchase {purchase.id}: "
            f"{amount_refunded}/{amount}, access unchanged"
        )
        return purchase

    if not purchase.can_transition("refunded"):
        raise PurchaseNotFoundError(
            f"Purchase {purchase.id} is {purchase.status}; cannot refund yet"
        )

    purchase.status = "refunded"

    revoked = (
        TrackAccess.query
        .filter_by(purchase_id=purchase.id)
        .filter(TrackAccess.revoked_at.is_(None))
        .update({"revoked_at": now}, synchronize_session="fetch")
    )
    reversed_entries = (
        EarningsLedgerEntry.query
        .filter_by(purchase_id=purchase.id, status="pending")
        .update({"status": "refunded"}, synchronize_session="fetch")
    )
    db.session.flush()

    log_payment_audit("purchase.refunded", purchase.id, {
        "amount_refunded": amount_refunded,
        "grants_revoked": revoked,
        "ledger_entries_reversed": reversed_entries,
    })

    logger.info(
        f"Full refund on purchase {purchase.id}: revoked {revoked} grants, "
        f"reversed {reversed_entries} ledger entries"
    )
    return purchase


# ──────────────────────────────────────────────
# account.updated
# ──────────────────────────────────────────────

def _derive_account_status(account):
    """Map Connect account flags to our seller status.

    charges + payouts enabled -> active
    details submitted only    -> onboarding_incomplete
    otherwise                 -> pending_onboarding
    """
    if account.get("charges_enabled") and account.get("payouts_enabled"):
        return "active"
    if account.get("details_submitted"):
        return "onboarding_incomplete"
    return "pending_onboarding"


def sync_seller_account(account):
    """Copy a Connect account's payout flags onto the SellerAccount row."""
    stripe_account_id = account.get("id")
    seller_account = SellerAccount.query.filter_by(
        stripe_account_id=stripe_account_id
    ).first()

    if seller_account is None:
        logger.warning(f"account.updated: no seller for account {stripe_account_id}")
        return None

    status = _derive_account_status(account)

    seller_account.charges_enabled = bool(account.get("charges_enabled"))
    seller_account.payouts_enabled = bool(account.get("payouts_enabled"))
    seller_account.details_submitted = bool(account.get("details_submitted"))
    if status == "active" and seller_account.status != "active":
        seller_account.onboarding_completed_at = datetime.now(timezone.utc)
    seller_account.status = status

    business_profile = account.get("business_profile") or {}
    if business_profile.get("name"):
        seller_account.business_name = business_profile["name"]
    if account.get("country"):
        seller_account.country = account["country"]

    db.session.flush()

    log_payment_audit("seller_account.updated", metadata={
        "seller_id": seller_account.seller_id,
        "stripe_account_id": stripe_account_id,
        "status": status,
        "charges_enabled": seller_account.charges_enabled,
    })
    return seller_account
