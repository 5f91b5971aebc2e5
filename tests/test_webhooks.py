"""Tests for the webhooks blueprint and Stripe event handling.

Covers:
- Webhook signature verification (missing, wrong secret, expired)
- Idempotent event processing (redeliveries are no-ops)
- checkout.session.completed / async_payment_succeeded fulfillment
- Guest checkout end to end
- Multi-seller settlement marker
- Handler failures roll back and are recorded for replay
- In-flight and crashed deliveries
- account.updated seller sync
- Unknown event types (accepted, recorded, no side effects)
- replay-webhooks and seed-demo CLI commands
"""

import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import text

from marketplace.errors import ConsistencyError
from marketplace.extensions import db
from marketplace.models.audit import AuditEvent
from marketplace.models.catalog import SellerAccount, Track
from marketplace.models.earnings import EarningsLedgerEntry
from marketplace.models.purchase import Purchase, PurchaseItem, TrackAccess
from marketplace.models.webhook_event import WebhookEvent
from marketplace.services.access_service import has_track_access


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, seed_data):
        """POST /stripe/webhooks without signature -> 400."""
        resp = client.post(
            "/stripe/webhooks",
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data
        assert WebhookEvent.query.count() == 0

    def test_wrong_secret_returns_401(self, post_webhook, make_event, make_session, seed_data):
        """Signed with another secret -> 401 and nothing recorded."""
        event = make_event("checkout.session.completed", make_session([seed_data["track_id"]]))

        resp = post_webhook(event, secret="whsec_someone_else")
        assert resp.status_code == 401
        assert b"Invalid signature" in resp.data
        assert WebhookEvent.query.count() == 0
        assert Purchase.query.count() == 0

    def test_garbage_signature_returns_401(self, client, seed_data):
        resp = client.post(
            "/stripe/webhooks",
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "bad_sig"},
        )
        assert resp.status_code == 401
        assert WebhookEvent.query.count() == 0

    def test_expired_signature_returns_401(self, post_webhook, make_event, seed_data):
        """A correctly signed but 10-minute-old delivery is a replay."""
        event = make_event("account.updated", {"id": "acct_seller1"})

        resp = post_webhook(event, timestamp=int(time.time()) - 600)
        assert resp.status_code == 401
        assert WebhookEvent.query.count() == 0


class TestCheckoutCompleted:
    """Tests for checkout.session.completed webhook."""

    def test_guest_purchase_fulfilled(self, post_webhook, make_event, make_session, seed_data):
        """Guest buys one 2.99 track from an active seller."""
        session = make_session([seed_data["track_id"]], guest_session_id="guest_abc")
        resp = post_webhook(make_event("checkout.session.completed", session, "evt_guest_1"))

        assert resp.status_code == 200
        assert json.loads(resp.data) == {"status": "processed"}

        purchase = Purchase.query.filter_by(stripe_checkout_session_id="cs_test_1").one()
        assert purchase.status == "succeeded"
        assert purchase.user_id is None
        assert purchase.guest_session_id == "guest_abc"
        assert purchase.stripe_payment_intent_id == "pi_test_1"
        assert purchase.amount_total == 299
        assert purchase.currency == "USD"
        assert purchase.completed_at is not None

        item = PurchaseItem.query.filter_by(purchase_id=purchase.id).one()
        assert (item.price, item.platform_fee, item.seller_earnings) == (299, 45, 254)

        grant = TrackAccess.query.filter_by(purchase_id=purchase.id).one()
        assert grant.guest_session_id == "guest_abc"
        assert grant.is_active

        entry = EarningsLedgerEntry.query.filter_by(purchase_id=purchase.id).one()
        assert entry.seller_id == seed_data["seller_id"]
        assert entry.gross_cents == 299
        assert entry.platform_fee_cents == 45
        assert entry.processing_fee_cents == 39
        assert entry.seller_earnings_cents == 254
        assert entry.settlement == "destination"
        assert entry.status == "pending"

        assert has_track_access(seed_data["track_id"], guest_session_id="guest_abc")
        assert not has_track_access(seed_data["track_id"], guest_session_id="guest_other")

        evt = WebhookEvent.query.filter_by(stripe_event_id="evt_guest_1").one()
        assert evt.status == "processed"
        assert evt.attempts == 1
        assert evt.event_type == "checkout.session.completed"
        assert evt.payload["data"]["object"]["id"] == "cs_test_1"

        audit = AuditEvent.query.filter_by(action="purchase.fulfilled").one()
        assert audit.purchase_id == purchase.id
        assert audit.actor_user_id is None

    def test_signed_in_buyer(self, post_webhook, make_event, make_session, seed_data):
        session = make_session([seed_data["track_id"]], user_id=seed_data["buyer_id"])
        post_webhook(make_event("checkout.session.completed", session))

        purchase = Purchase.query.one()
        assert purchase.user_id == seed_data["buyer_id"]
        assert has_track_access(seed_data["track_id"], user_id=seed_data["buyer_id"])

    def test_redelivery_is_a_no_op(self, post_webhook, make_event, make_session, seed_data):
        """The same event delivered three times leaves one purchase."""
        event = make_event(
            "checkout.session.completed",
            make_session([seed_data["track_id"], seed_data["track2_id"]]),
            "evt_repeat",
        )

        statuses = []
        for _ in range(3):
            resp = post_webhook(event)
            assert resp.status_code == 200
            statuses.append(json.loads(resp.data)["status"])

        assert statuses == ["processed", "already_processed", "already_processed"]
        assert Purchase.query.count() == 1
        assert PurchaseItem.query.count() == 2
        assert TrackAccess.query.count() == 2
        assert EarningsLedgerEntry.query.count() == 2
        assert AuditEvent.query.filter_by(action="purchase.fulfilled").count() == 1
        assert WebhookEvent.query.filter_by(stripe_event_id="evt_repeat").one().attempts == 1

    def test_async_payment_for_same_session_does_not_duplicate(
        self, post_webhook, make_event, make_session, seed_data
    ):
        """completed and async_payment_succeeded can both arrive for one session."""
        session = make_session([seed_data["track_id"]])
        post_webhook(make_event("checkout.session.completed", session, "evt_a"))
        resp = post_webhook(make_event("checkout.session.async_payment_succeeded", session, "evt_b"))

        assert resp.status_code == 200
        assert Purchase.query.count() == 1
        assert TrackAccess.query.count() == 1
        assert WebhookEvent.query.filter_by(status="processed").count() == 2

    def test_delayed_payment_fulfilled_on_async_success(
        self, post_webhook, make_event, make_session, seed_data
    ):
        unpaid = make_session([seed_data["track_id"]], payment_status="unpaid")
        resp = post_webhook(make_event("checkout.session.completed", unpaid, "evt_unpaid"))
        assert resp.status_code == 200
        assert Purchase.query.count() == 0

        paid = make_session([seed_data["track_id"]])
        resp = post_webhook(make_event("checkout.session.async_payment_succeeded", paid, "evt_paid"))
        assert resp.status_code == 200
        assert Purchase.query.one().status == "succeeded"

    def test_multi_seller_marks_deferred_settlement(
        self, post_webhook, make_event, make_session, seed_data
    ):
        session = make_session([seed_data["track_id"], seed_data["track3_id"]])
        post_webhook(make_event("checkout.session.completed", session))

        entries = {e.seller_id: e for e in EarningsLedgerEntry.query.all()}
        assert set(entries) == {seed_data["seller_id"], seed_data["seller2_id"]}
        assert all(e.settlement == "deferred" for e in entries.values())
        assert entries[seed_data["seller2_id"]].platform_fee_cents == 150
        assert entries[seed_data["seller2_id"]].seller_earnings_cents == 850
        assert Purchase.query.one().amount_total == 1299

    def test_existing_purchase_counts_as_already_fulfilled(
        self, post_webhook, make_event, make_session, seed_data
    ):
        with patch(
            "marketplace.services.stripe_service.fulfill_checkout_session",
            side_effect=ConsistencyError("created concurrently"),
        ):
            resp = post_webhook(make_event(
                "checkout.session.completed", make_session([seed_data["track_id"]])
            ))

        assert resp.status_code == 200
        assert json.loads(resp.data) == {"status": "already_fulfilled"}
        assert WebhookEvent.query.one().status == "processed"


class TestHandlerFailure:
    """A failing handler leaves no partial writes and can be retried."""

    def test_missing_item_metadata_marks_event_failed(
        self, post_webhook, make_event, make_session, seed_data
    ):
        session = make_session([seed_data["track_id"]])
        del session["metadata"]["item_0"]

        resp = post_webhook(make_event("checkout.session.completed", session, "evt_broken"))
        assert resp.status_code == 500
        assert "item_0" in json.loads(resp.data)["error"]

        evt = WebhookEvent.query.filter_by(stripe_event_id="evt_broken").one()
        assert evt.status == "failed"
        assert "item_0" in evt.error
        assert Purchase.query.count() == 0

    def test_failure_rolls_back_partial_writes(
        self, post_webhook, make_event, make_session, seed_data
    ):
        """Audit logging is the last write; if it fails nothing survives."""
        event = make_event("checkout.session.completed", make_session([seed_data["track_id"]]), "evt_rb")

        with patch(
            "marketplace.services.fulfillment_service.log_payment_audit",
            side_effect=RuntimeError("audit store down"),
        ):
            resp = post_webhook(event)

        assert resp.status_code == 500
        assert Purchase.query.count() == 0
        assert PurchaseItem.query.count() == 0
        assert TrackAccess.query.count() == 0
        assert EarningsLedgerEntry.query.count() == 0
        assert WebhookEvent.query.one().status == "failed"

        # Stripe redelivers once the problem is gone
        resp = post_webhook(event)
        assert resp.status_code == 200
        assert json.loads(resp.data) == {"status": "processed"}

        evt = WebhookEvent.query.one()
        assert evt.status == "processed"
        assert evt.error is None
        assert evt.attempts == 2
        assert Purchase.query.one().status == "succeeded"


class TestPurchaseConstraintFailure:
    """Only an existing purchase counts as already fulfilled."""

    @pytest.fixture
    def foreign_keys(self, db_session):
        # SQLite only enforces FKs when asked; the pragma is ignored inside a transaction
        db.session.execute(text("PRAGMA foreign_keys=ON"))
        db.session.commit()
        yield
        db.session.rollback()
        db.session.execute(text("PRAGMA foreign_keys=OFF"))
        db.session.commit()

    def test_unknown_buyer_marks_event_failed(
        self, foreign_keys, post_webhook, make_event, make_session, seed_data
    ):
        session = make_session([seed_data["track_id"]], user_id="deleted-user-id")
        resp = post_webhook(make_event("checkout.session.completed", session, "evt_fk"))

        assert resp.status_code == 500
        assert Purchase.query.count() == 0

        evt = WebhookEvent.query.filter_by(stripe_event_id="evt_fk").one()
        assert evt.status == "failed"
        assert evt.error

    def test_duplicate_payment_intent_marks_event_failed(
        self, post_webhook, make_event, make_session, seed_data
    ):
        post_webhook(make_event(
            "checkout.session.completed",
            make_session([seed_data["track_id"]], session_id="cs_first"),
            "evt_first",
        ))
        resp = post_webhook(make_event(
            "checkout.session.completed",
            make_session([seed_data["track2_id"]], session_id="cs_second"),
            "evt_second",
        ))

        assert resp.status_code == 500
        assert Purchase.query.count() == 1
        assert WebhookEvent.query.filter_by(stripe_event_id="evt_second").one().status == "failed"


class TestConcurrentDelivery:

    def _insert_processing(self, event, started_at):
        db.session.add(WebhookEvent(
            stripe_event_id=event["id"],
            event_type=event["type"],
            payload=event,
            status="processing",
            attempts=1,
            processing_started_at=started_at,
        ))
        db.session.commit()

    def test_in_flight_event_returns_409(self, post_webhook, make_event, make_session, seed_data):
        event = make_event("checkout.session.completed", make_session([seed_data["track_id"]]))
        self._insert_processing(event, datetime.now(timezone.utc))

        resp = post_webhook(event)
        assert resp.status_code == 409
        assert Purchase.query.count() == 0
        assert WebhookEvent.query.one().status == "processing"

    def test_crashed_attempt_is_taken_over(self, post_webhook, make_event, make_session, seed_data):
        event = make_event("checkout.session.completed", make_session([seed_data["track_id"]]))
        self._insert_processing(event, datetime.now(timezone.utc) - timedelta(minutes=10))

        resp = post_webhook(event)
        assert resp.status_code == 200

        evt = WebhookEvent.query.one()
        assert evt.status == "processed"
        assert evt.attempts == 2
        assert Purchase.query.count() == 1


class TestAccountUpdated:
    """Tests for account.updated webhook."""

    def test_seller_becomes_active(self, post_webhook, make_event, seed_data):
        account = {
            "id": "acct_blocked",
            "object": "account",
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
            "country": "US",
            "business_profile": {"name": "Blocked Studio"},
        }
        resp = post_webhook(make_event("account.updated", account))
        assert resp.status_code == 200

        seller_account = SellerAccount.query.filter_by(stripe_account_id="acct_blocked").one()
        assert seller_account.status == "active"
        assert seller_account.charges_enabled is True
        assert seller_account.is_payable
        assert seller_account.onboarding_completed_at is not None
        assert seller_account.business_name == "Blocked Studio"
        assert seller_account.country == "US"
        assert AuditEvent.query.filter_by(action="seller_account.updated").count() == 1

    def test_seller_loses_charges(self, post_webhook, make_event, seed_data):
        account = {
            "id": "acct_seller1",
            "charges_enabled": False,
            "payouts_enabled": False,
            "details_submitted": True,
        }
        post_webhook(make_event("account.updated", account))

        seller_account = SellerAccount.query.filter_by(stripe_account_id="acct_seller1").one()
        assert seller_account.status == "onboarding_incomplete"
        assert not seller_account.is_payable

    def test_unknown_account_is_acknowledged(self, post_webhook, make_event, seed_data):
        resp = post_webhook(make_event("account.updated", {"id": "acct_unknown"}))
        assert resp.status_code == 200
        assert WebhookEvent.query.one().status == "processed"


class TestUnhandledEvents:

    def test_unknown_type_recorded_as_processed(self, post_webhook, make_event, seed_data):
        resp = post_webhook(make_event("customer.created", {"id": "cus_1"}, "evt_other"))
        assert resp.status_code == 200
        assert json.loads(resp.data) == {"status": "processed"}

        evt = WebhookEvent.query.filter_by(stripe_event_id="evt_other").one()
        assert evt.status == "processed"
        assert Purchase.query.count() == 0
        assert AuditEvent.query.count() == 0


class TestCli:

    def test_replay_webhooks_reprocesses_failed_refund(
        self, app, post_webhook, make_event, make_session, seed_data
    ):
        """A refund that beat its purchase is replayed after fulfillment."""
        charge = {
            "id": "ch_1", "object": "charge", "payment_intent": "pi_test_1",
            "amount": 299, "amount_refunded": 299,
        }
        resp = post_webhook(make_event("charge.refunded", charge, "evt_refund"))
        assert resp.status_code == 500

        post_webhook(make_event(
            "checkout.session.completed", make_session([seed_data["track_id"]]), "evt_checkout"
        ))
        assert Purchase.query.one().status == "succeeded"

        runner = app.test_cli_runner()
        result = runner.invoke(args=["replay-webhooks", "--dry-run"])
        assert result.exit_code == 0
        assert "evt_refund" in result.output
        assert WebhookEvent.query.filter_by(stripe_event_id="evt_refund").one().status == "failed"

        result = runner.invoke(args=["replay-webhooks"])
        assert result.exit_code == 0
        assert "1 succeeded" in result.output

        assert Purchase.query.one().status == "refunded"
        assert WebhookEvent.query.filter_by(status="failed").count() == 0

    def test_replay_webhooks_with_nothing_failed(self, app, seed_data):
        result = app.test_cli_runner().invoke(args=["replay-webhooks"])
        assert result.exit_code == 0
        assert "No failed webhook events" in result.output

    def test_seed_demo(self, app):
        result = app.test_cli_runner().invoke(
            args=["seed-demo", "--seller-email", "demo@example.com", "--account-id", "acct_demo"]
        )
        assert result.exit_code == 0, result.output

        account = SellerAccount.query.filter_by(stripe_account_id="acct_demo").one()
        assert account.is_payable
        assert Track.query.filter_by(seller_id=account.seller_id).count() == 2
