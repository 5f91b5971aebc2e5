"""Earnings service — seller-facing totals from the earnings ledger."""

from sqlalchemy import func

from marketplace.extensions import db
from marketplace.models.earnings import EarningsLedgerEntry


def _empty_bucket():
    return {
        "count": 0,
        "grossCents": 0,
        "platformFeeCents": 0,
        "processingFeeCents": 0,
        "sellerEarningsCents": 0,
    }


def summarize_seller_earnings(seller_id):
    """Totals per ledger status (pending / refunded) for one seller."""
    rows = (
        db.session.query(
            EarningsLedgerEntry.status,
            func.count(EarningsLedgerEntry.id),
            func.coalesce(func.sum(EarningsLedgerEntry.gross_cents), 0),
            func.coalesce(func.sum(EarningsLedgerEntry.platform_fee_cents), 0),
            func.coalesce(func.sum(EarningsLedgerEntry.processing_fee_cents), 0),
            func.coalesce(func.sum(EarningsLedgerEntry.seller_earnings_cents), 0),
        )
        .filter(EarningsLedgerEntry.seller_id == seller_id)
        .group_by(EarningsLedgerEntry.status)
        .all()
    )

    summary = {status: _empty_bucket() for status in EarningsLedgerEntry.STATUSES}
    for status, count, gross, platform_fee, processing_fee, net in rows:
        summary[status] = {
            "count": count,
            "grossCents": int(gross),
            "platformFeeCents": int(platform_fee),
            "processingFeeCents": int(processing_fee),
            "sellerEarningsCents": int(net),
        }
    return summary
