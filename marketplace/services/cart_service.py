"""Cart service — parse and revalidate client carts before checkout.

Responsible for:
- Parsing the JSON cart payload into CartItem values
- Checking every item against the authoritative track listing
  (closes the "submit a lower price" tampering hole)
- Checking every seller in the cart can actually be paid

Nothing here writes to the database. Every failure raises
ValidationError with a code the checkout route hands back to the buyer.
"""

from dataclasses import dataclass

from marketplace.errors import ValidationError
from marketplace.models.catalog import SellerAccount, Track


@dataclass(frozen=True)
class CartItem:
    track_id: str
    price: int  # minor units
    seller_id: str
    seller_payout_account_id: str = None
    title: str = ""
    artist_name: str = None


def _required_str(raw, key, index):
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"Item {index}: {key} is required.",
            code="invalid_item",
            details={"index": index, "field": key},
        )
    return value.strip()


def parse_cart(payload, max_items):
    """Turn the request's "items" list into CartItem objects.

    Accepts the web client's camelCase keys:
        trackId, price, sellerId, sellerPayoutAccountId
        (or sellerConnectAccountId), title, artistName

    Raises:
        ValidationError: empty/oversized cart, duplicate track, bad field.
    """
    raw_items = (payload or {}).get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Cart is empty.", code="empty_cart")
    if len(raw_items) > max_items:
        raise ValidationError(
            f"Cart has {len(raw_items)} items; the limit is {max_items}.",
            code="cart_too_large",
        )

    items = []
    seen = set()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(
                f"Item {index} is not an object.", code="invalid_item",
                details={"index": index},
            )

        track_id = _required_str(raw, "trackId", index)
        seller_id = _required_str(raw, "sellerId", index)
        title = _required_str(raw, "title", index)

        # bool is an int subclass; True must not pass as a 1-cent price
        price = raw.get("price")
        if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
            raise ValidationError(
                f"Item {index}: price must be a positive whole number of cents.",
                code="invalid_item",
                details={"index": index, "field": "price"},
            )

        if track_id in seen:
            raise ValidationError(
                f"Track {track_id} appears more than once in the cart.",
                code="duplicate_item",
                details={"trackId": track_id},
            )
        seen.add(track_id)

        items.append(CartItem(
            track_id=track_id,
            price=price,
            seller_id=seller_id,
            seller_payout_account_id=(
                raw.get("sellerPayoutAccountId")
                or raw.get("sellerConnectAccountId")
            ),
            title=title,
            artist_name=raw.get("artistName"),
        ))

    return items


def validate_cart_items(items):
    """Check each item against the stored track.

    Returns:
        dict of track_id -> Track for the caller's later use.

    Raises:
        ValidationError: track missing, price mismatch, or seller mismatch.
    """
    track_ids = [item.track_id for item in items]
    tracks = {
        t.id: t for t in Track.query.filter(Track.id.in_(track_ids)).all()
    }

    for item in items:
        track = tracks.get(item.track_id)
        if track is None or not track.is_published:
            raise ValidationError(
                f"Track {item.track_id} not found.",
                code="track_not_found",
                details={"trackId": item.track_id},
            )
        if track.price_cents != item.price:
            raise ValidationError(
                f"Price mismatch for track {item.track_id}.",
                code="price_mismatch",
                details={
                    "trackId": item.track_id,
                    "submitted": item.price,
                    "expected": track.price_cents,
                },
            )
        if track.seller_id != item.seller_id:
            raise ValidationError(
                f"Seller mismatch for track {item.track_id}.",
                code="seller_mismatch",
                details={"trackId": item.track_id},
            )

    return tracks


def validate_sellers(seller_ids):
    """Check every seller has a Connect account that can take charges.

    One unpayable seller rejects the whole cart.

    Returns:
        dict of seller_id -> SellerAccount.

    Raises:
        ValidationError: seller not onboarded or charges disabled.
    """
    accounts = {
        a.seller_id: a
        for a in SellerAccount.query.filter(
            SellerAccount.seller_id.in_(list(seller_ids))
        ).all()
    }

    for seller_id in seller_ids:
        account = accounts.get(seller_id)
        if account is None or not account.stripe_account_id:
            raise ValidationError(
                f"Seller {seller_id} not found or not onboarded.",
                code="seller_not_onboarded",
                details={"sellerId": seller_id},
            )
        if not account.charges_enabled:
            raise ValidationError(
                f"Seller {seller_id} cannot accept charges.",
                code="seller_charges_disabled",
                details={"sellerId": seller_id},
            )

    return accounts


def distinct_seller_ids(items):
    """Seller ids in first-seen cart order, without repeats."""
    return list(dict.fromkeys(item.seller_id for item in items))
