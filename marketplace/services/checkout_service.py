"""Checkout service — build Stripe Checkout Sessions for marketplace carts.

Responsible for:
- Revalidating the cart and its sellers (cart_service) before any Stripe call
- Reusing or registering a Stripe Product/Price per track
- Writing the per-item settlement snapshot into session metadata, so the
  webhook side can rebuild the order without trusting the client again
- Choosing how funds are routed:
    one seller   -> destination charge, platform fee withheld by Stripe
    many sellers -> no automatic routing; ledger drives later transfers
- Reading a session back for the success page
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlsplit

import stripe
from flask import current_app

from marketplace.errors import CheckoutCreationError, ValidationError
from marketplace.extensions import db
from marketplace.models.purchase import Purchase
from marketplace.services.cart_service import (
    distinct_seller_ids,
    validate_cart_items,
    validate_sellers,
)
from marketplace.services.fees import encode_item_snapshot, platform_fee

logger = logging.getLogger(__name__)

GUEST_USER = "guest"


def new_guest_session_id():
    """Opaque key a guest uses to reach their tracks after checkout."""
    return f"guest_{secrets.token_urlsafe(24)}"


def _same_origin(url, base_url):
    target, base = urlsplit(url), urlsplit(base_url)
    return (target.scheme, target.netloc) == (base.scheme, base.netloc)


def _resolve_return_urls(success_url, cancel_url):
    """Default the return URLs and refuse ones pointing off-site."""
    base_url = current_app.config["APP_BASE_URL"].rstrip("/")

    success_url = success_url or (
        f"{base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"
    )
    cancel_url = cancel_url or f"{base_url}/checkout/cancel"

    for name, url in (("successUrl", success_url), ("cancelUrl", cancel_url)):
        if not _same_origin(url, base_url):
            raise ValidationError(
                f"{name} must point at {base_url}.",
                code="invalid_return_url",
                details={"field": name},
            )
    return success_url, cancel_url


def _ensure_stripe_price(track, currency):
    """Return a Stripe Price id for the track's current listing price.

    Reuses the cached price while the listing price is unchanged; otherwise
    creates (or reuses) the Product and a fresh Price and caches the ids.
    Flushes but does NOT commit — the caller commits.
    """
    if track.stripe_price_id and track.stripe_price_amount == track.price_cents:
        return track.stripe_price_id

    if not track.stripe_product_id:
        product = stripe.Product.create(
            name=track.title,
            metadata={
                "trackId": track.id,
                "sellerId": track.seller_id,
            },
        )
        track.stripe_product_id = product.id

    price = stripe.Price.create(
        product=track.stripe_product_id,
        unit_amount=track.price_cents,
        currency=currency,
    )
    track.stripe_price_id = price.id
    track.stripe_price_amount = track.price_cents
    db.session.flush()
    return price.id


def create_checkout_session(items, user_id=None, guest_session_id=None,
                            success_url=None, cancel_url=None,
                            customer_email=None):
    """Create a Stripe Checkout Session for a cart of tracks.

    Args:
        items: list of CartItem (already parsed, not yet trusted).
        user_id: signed-in buyer, or None for guest checkout.
        guest_session_id: access key for guests; generated if missing.
        success_url / cancel_url: optional, must share APP_BASE_URL's origin.
        customer_email: prefilled on the Stripe page.

    Returns a dict with sessionId, url, expiresAt, guestSessionId.

    Raises:
        ValidationError: cart, seller, or return URL problems. Raised before
            any Stripe call is made.
        CheckoutCreationError: Stripe rejected a request.
    """
    config = current_app.config

    # --- Validate before touching Stripe ---
    tracks = validate_cart_items(items)
    seller_ids = distinct_seller_ids(items)
    accounts = validate_sellers(seller_ids)
    success_url, cancel_url = _resolve_return_urls(success_url, cancel_url)

    guest_session_id = guest_session_id or new_guest_session_id()
    commission = config["PLATFORM_COMMISSION_PERCENT"]
    currency = config["CHECKOUT_CURRENCY"]
    multi_seller = len(seller_ids) > 1

    stripe.api_key = config["STRIPE_SECRET_KEY"]

    try:
        line_items = []
        item_metadata = {}
        total_amount = 0
        total_platform_fee = 0

        for index, item in enumerate(items):
            track = tracks[item.track_id]
            account = accounts[item.seller_id]

            line_items.append({
                "price": _ensure_stripe_price(track, currency),
                "quantity": 1,
            })

            # Payout account comes from our records, not the client
            item_metadata[f"item_{index}"] = encode_item_snapshot(
                track_id=track.id,
                seller_id=track.seller_id,
                payout_account_id=account.stripe_account_id,
                price=track.price_cents,
                commission_percent=commission,
            )
            total_amount += track.price_cents
            total_platform_fee += platform_fee(track.price_cents, commission)

        expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=config["CHECKOUT_SESSION_TTL_MINUTES"]
        )

        metadata = {
            **item_metadata,
            "userId": user_id or GUEST_USER,
            "guestSessionId": guest_session_id,
            "itemCount": str(len(items)),
            "totalAmount": str(total_amount),
            "totalPlatformFee": str(total_platform_fee),
            "multiSeller": "true" if multi_seller else "false",
        }

        params = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": guest_session_id,
            "metadata": metadata,
            "payment_method_types": ["card"],
            "expires_at": int(expires_at.timestamp()),
        }
        if customer_email:
            params["customer_email"] = customer_email

        if not multi_seller:
            params["payment_intent_data"] = {
                "application_fee_amount": total_platform_fee,
                "transfer_data": {
                    "destination": accounts[seller_ids[0]].stripe_account_id,
                },
                "metadata": {
                    "userId": user_id or GUEST_USER,
                    "guestSessionId": guest_session_id,
                },
            }
        else:
            # Funds stay on the platform; transfers per seller happen later
            # from the earnings ledger, grouped under this cart.
            params["payment_intent_data"] = {
                "transfer_group": f"cart_{guest_session_id}",
                "metadata": {
                    "userId": user_id or GUEST_USER,
                    "guestSessionId": guest_session_id,
                    "multiSeller": "true",
                },
            }

        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        # Keep Product/Price ids Stripe already issued so a retry reuses them
        db.session.commit()
        logger.error(f"Stripe checkout session creation failed: {e}", exc_info=True)
        raise CheckoutCreationError("Failed to create checkout session") from e

    # Persist any newly cached Stripe product/price ids
    db.session.commit()

    logger.info(
        f"Created checkout session {session.id} ({len(items)} items, "
        f"{len(seller_ids)} sellers, total={total_amount})"
    )

    return {
        "sessionId": session.id,
        "url": session.url,
        "expiresAt": expires_at.isoformat(),
        "guestSessionId": guest_session_id,
    }


def get_checkout_status(session_id):
    """Report a session's Stripe state plus our purchase state.

    Used by the success page to poll until the webhook has fulfilled the
    order. Raises stripe.StripeError on API failures.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    session = stripe.checkout.Session.retrieve(session_id)

    purchase = Purchase.query.filter_by(
        stripe_checkout_session_id=session_id
    ).first()

    return {
        "sessionId": session_id,
        "status": session.status,
        "paymentStatus": session.payment_status,
        "purchaseStatus": purchase.status if purchase else None,
        "fulfilled": purchase is not None and purchase.status == "succeeded",
    }
