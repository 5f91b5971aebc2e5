"""Fee arithmetic and the per-item settlement snapshot.

Amounts are integer minor units (cents). Everything here is pure: checkout
computes the split once, writes it into the session metadata with
encode_item_snapshot(), and fulfillment reads it back with
decode_item_snapshot() instead of recomputing.
"""

import json
from decimal import ROUND_HALF_UP, Decimal

SNAPSHOT_FIELDS = (
    "trackId",
    "sellerId",
    "sellerPayoutAccountId",
    "price",
    "platformFee",
    "sellerEarnings",
)


def _round_cents(value):
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def platform_fee(gross_cents, commission_percent):
    """Platform commission on a sale, rounded half up to a whole cent.

    platform_fee(299, 15) == 45  (44.85 rounds up)
    """
    if gross_cents < 0:
        raise ValueError("gross amount cannot be negative")
    rate = Decimal(str(commission_percent))
    if rate < 0 or rate > 100:
        raise ValueError("commission percent must be between 0 and 100")
    return _round_cents(Decimal(gross_cents) * rate / Decimal(100))


def seller_earnings(gross_cents, fee_cents):
    return gross_cents - fee_cents


def processing_fee(gross_cents, fee_percent, fixed_cents):
    """Estimate Stripe's card fee (percentage + fixed per transaction)."""
    if gross_cents <= 0:
        return 0
    variable = Decimal(gross_cents) * Decimal(str(fee_percent)) / Decimal(100)
    return _round_cents(variable + Decimal(fixed_cents))


def encode_item_snapshot(track_id, seller_id, payout_account_id, price,
                         commission_percent):
    """Serialize one cart line's settlement split for session metadata.

    Returns the compact JSON string stored under item_<index>.
    """
    fee = platform_fee(price, commission_percent)
    snapshot = {
        "trackId": track_id,
        "sellerId": seller_id,
        "sellerPayoutAccountId": payout_account_id,
        "price": price,
        "platformFee": fee,
        "sellerEarnings": seller_earnings(price, fee),
    }
    return json.dumps(snapshot, separators=(",", ":"))


def decode_item_snapshot(raw):
    """Parse an item_<index> metadata value back into a dict.

    Raises ValueError if the value is not a complete, internally
    consistent snapshot.
    """
    try:
        snapshot = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"item snapshot is not valid JSON: {e}") from e

    if not isinstance(snapshot, dict):
        raise ValueError("item snapshot must be a JSON object")

    missing = [f for f in SNAPSHOT_FIELDS if f not in snapshot]
    if missing:
        raise ValueError(f"item snapshot missing fields: {', '.join(missing)}")

    for field in ("price", "platformFee", "sellerEarnings"):
        if not isinstance(snapshot[field], int) or snapshot[field] < 0:
            raise ValueError(f"item snapshot field {field} must be a non-negative integer")

    if snapshot["platformFee"] + snapshot["sellerEarnings"] != snapshot["price"]:
        raise ValueError("item snapshot split does not add up to the price")

    return snapshot
