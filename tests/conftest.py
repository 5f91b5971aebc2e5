"""Shared test fixtures for the marketplace payments test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: buyer, sellers in every onboarding state, and their tracks
- login: sign a user into the test client's session
- make_session / make_event: Stripe-shaped checkout session and event dicts
- post_webhook: POST an event with a real Stripe-Signature header
"""

import hashlib
import hmac
import json
import time

import pytest

from marketplace import create_app
from marketplace.extensions import db as _db
from marketplace.models.user import User
from marketplace.models.catalog import SellerAccount, Track
from marketplace.services.fees import encode_item_snapshot, platform_fee

WEBHOOK_SECRET = "whsec_test_fake"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed a buyer, four sellers, and their tracks.

    Sellers:
    - seller:          active Connect account acct_seller1
    - seller2:         active Connect account acct_seller2
    - blocked_seller:  account exists, charges disabled
    - new_seller:      no Connect account at all

    Returns a dict of plain IDs so tests never depend on attached objects.
    """
    # --- Users ---
    buyer = User(email="buyer@example.com", display_name="Buyer")
    seller = User(email="seller@example.com", display_name="Calm Voice")
    seller2 = User(email="seller2@example.com", display_name="Night Owl")
    blocked_seller = User(email="blocked@example.com", display_name="Blocked")
    new_seller = User(email="new@example.com", display_name="Newcomer")
    _db.session.add_all([buyer, seller, seller2, blocked_seller, new_seller])
    _db.session.flush()

    # --- Connect accounts ---
    _db.session.add_all([
        SellerAccount(
            seller_id=seller.id,
            stripe_account_id="acct_seller1",
            status="active",
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
        ),
        SellerAccount(
            seller_id=seller2.id,
            stripe_account_id="acct_seller2",
            status="active",
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
        ),
        SellerAccount(
            seller_id=blocked_seller.id,
            stripe_account_id="acct_blocked",
            status="onboarding_incomplete",
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=True,
        ),
    ])

    # --- Tracks ---
    track = Track(seller_id=seller.id, title="Morning Calm", artist_name="Calm Voice", price_cents=299)
    track2 = Track(seller_id=seller.id, title="Focus Flow", artist_name="Calm Voice", price_cents=499)
    track3 = Track(seller_id=seller2.id, title="Deep Sleep", artist_name="Night Owl", price_cents=1000)
    blocked_track = Track(seller_id=blocked_seller.id, title="Blocked Track", price_cents=500)
    no_account_track = Track(seller_id=new_seller.id, title="First Upload", price_cents=700)
    unpublished_track = Track(seller_id=seller.id, title="Draft", price_cents=300, is_published=False)
    _db.session.add_all([
        track, track2, track3, blocked_track, no_account_track, unpublished_track,
    ])
    _db.session.commit()

    return {
        "buyer_id": buyer.id,
        "seller_id": seller.id,
        "seller2_id": seller2.id,
        "blocked_seller_id": blocked_seller.id,
        "new_seller_id": new_seller.id,
        "track_id": track.id,  # 299, seller
        "track2_id": track2.id,  # 499, seller
        "track3_id": track3.id,  # 1000, seller2
        "blocked_track_id": blocked_track.id,
        "no_account_track_id": no_account_track.id,
        "unpublished_track_id": unpublished_track.id,
    }


@pytest.fixture
def login(client):
    """Return a function that signs the given user id into the client."""

    def _login(user_id):
        with client.session_transaction() as sess:
            sess["_user_id"] = user_id
            sess["_fresh"] = True

    return _login


@pytest.fixture
def cart_item():
    """Return a function building the web client's JSON for one track."""

    def _item(track_id, **overrides):
        track = _db.session.get(Track, track_id)
        item = {
            "trackId": track.id,
            "price": track.price_cents,
            "sellerId": track.seller_id,
            "title": track.title,
            "artistName": track.artist_name,
        }
        item.update(overrides)
        return item

    return _item


@pytest.fixture
def make_session(seed_data):
    """Return a function building a completed checkout session object.

    The metadata is what create_checkout_session writes, built from the
    seeded tracks and accounts.
    """

    def _make(track_ids, session_id="cs_test_1", user_id=None,
              guest_session_id="guest_abc", payment_intent="pi_test_1",
              payment_status="paid"):
        metadata = {}
        seller_ids = set()
        total = 0
        total_fee = 0
        for index, track_id in enumerate(track_ids):
            track = _db.session.get(Track, track_id)
            account = SellerAccount.query.filter_by(seller_id=track.seller_id).first()
            metadata[f"item_{index}"] = encode_item_snapshot(
                track_id=track.id,
                seller_id=track.seller_id,
                payout_account_id=account.stripe_account_id if account else None,
                price=track.price_cents,
                commission_percent=15,
            )
            seller_ids.add(track.seller_id)
            total += track.price_cents
            total_fee += platform_fee(track.price_cents, 15)

        metadata.update({
            "userId": user_id or "guest",
            "guestSessionId": guest_session_id,
            "itemCount": str(len(track_ids)),
            "totalAmount": str(total),
            "totalPlatformFee": str(total_fee),
            "multiSeller": "true" if len(seller_ids) > 1 else "false",
        })

        return {
            "id": session_id,
            "object": "checkout.session",
            "status": "complete",
            "payment_status": payment_status,
            "payment_intent": payment_intent,
            "amount_total": total,
            "currency": "usd",
            "client_reference_id": guest_session_id,
            "metadata": metadata,
        }

    return _make


@pytest.fixture
def make_event():
    """Return a function wrapping an object in a Stripe event envelope."""

    def _make(event_type, obj, event_id="evt_test_1"):
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": obj},
        }

    return _make


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header value for the payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def post_webhook(client):
    """Return a function that POSTs a signed event to /stripe/webhooks."""

    def _post(event, secret=WEBHOOK_SECRET, timestamp=None):
        payload = json.dumps(event)
        return client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret, timestamp)},
        )

    return _post
