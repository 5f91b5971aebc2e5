"""Event ledger — at-most-once processing for Stripe webhook events.

The webhook_events table keys every event by its Stripe event id. A
delivery has to *claim* the row before its handler runs. The claim is one
INSERT ... ON CONFLICT DO UPDATE ... WHERE statement, so two concurrent
deliveries of the same id can never both win:

    no row                       -> inserted as "processing"   (CLAIMED)
    row "failed"                 -> taken over                 (CLAIMED)
    row "processing", lease old  -> taken over (crashed run)   (CLAIMED)
    row "processing", lease new  -> left alone                 (IN_FLIGHT)
    row "processed"              -> left alone                 (DUPLICATE)
"""

import enum
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from marketplace.extensions import db
from marketplace.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class Claim(enum.Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"
    IN_FLIGHT = "in_flight"


def _insert_for_dialect():
    if db.engine.dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def _plain_payload(event):
    """Stripe objects are dict subclasses; store them as plain JSON."""
    return json.loads(json.dumps(event))


def is_duplicate(event_id):
    """True only if this event id already reached "processed"."""
    return db.session.query(
        WebhookEvent.query.filter_by(
            stripe_event_id=event_id, status="processed"
        ).exists()
    ).scalar()


def claim(event):
    """Atomically take ownership of an event before running its handler.

    Commits the "processing" row so other workers can see it.
    Returns a Claim.
    """
    now = datetime.now(timezone.utc)
    lease = current_app.config["WEBHOOK_PROCESSING_LEASE_SECONDS"]
    stale_before = now - timedelta(seconds=lease)

    table = WebhookEvent.__table__
    insert = _insert_for_dialect()

    stmt = insert(table).values(
        id=str(uuid.uuid4()),
        stripe_event_id=event["id"],
        event_type=event["type"],
        payload=_plain_payload(event),
        status="processing",
        attempts=1,
        processing_started_at=now,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.stripe_event_id],
        set_={
            "status": "processing",
            "error": None,
            "payload": stmt.excluded.payload,
            "attempts": table.c.attempts + 1,
            "processing_started_at": now,
            "updated_at": now,
        },
        where=or_(
            table.c.status == "failed",
            and_(
                table.c.status == "processing",
                table.c.processing_started_at < stale_before,
            ),
        ),
    )

    result = db.session.execute(stmt)
    db.session.commit()

    if result.rowcount:
        return Claim.CLAIMED

    existing = WebhookEvent.query.filter_by(stripe_event_id=event["id"]).first()
    if existing is not None and existing.status == "processed":
        return Claim.DUPLICATE
    return Claim.IN_FLIGHT


def record(event_id, status, error=None):
    """Set the terminal status of a claimed event.

    Flushes but does NOT commit — the caller commits, so a "processed"
    status lands in the same transaction as the handler's writes.
    """
    if status not in ("processed", "failed"):
        raise ValueError(f"Invalid terminal status '{status}'")

    row = WebhookEvent.query.filter_by(stripe_event_id=event_id).first()
    if row is None:
        raise LookupError(f"No ledger row for event {event_id}")

    row.status = status
    row.error = error
    row.processed_at = datetime.now(timezone.utc)
    db.session.flush()
    return row


def failed_events(limit=None):
    """Failed rows, oldest first (for operator replay)."""
    query = WebhookEvent.query.filter_by(status="failed").order_by(
        WebhookEvent.created_at.asc()
    )
    if limit:
        query = query.limit(limit)
    return query.all()
