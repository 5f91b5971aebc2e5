import os
import logging

import click
from flask import Flask, jsonify

from marketplace.config import config_by_name
from marketplace.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from marketplace import models  # noqa: F401

    # --- Register blueprints ---
    from marketplace.blueprints.checkout import checkout_bp
    from marketplace.blueprints.webhooks import webhooks_bp
    from marketplace.blueprints.library import library_bp
    from marketplace.blueprints.seller import seller_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(library_bp)
    app.register_blueprint(seller_bp)

    # Exempt webhooks from CSRF — raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)
    # Guest checkout is a public JSON API with no session cookie to protect
    csrf.exempt(checkout_bp)

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only; nothing here should ever be rendered or cached
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--seller-email", default="seller@marketplace.local", help="Seller email")
    @click.option("--account-id", default="acct_demo_seller", help="Stripe Connect account ID")
    def seed_demo(seller_email, account_id):
        """Create a demo seller with a payable Connect account and two tracks.

        Usage:
            flask seed-demo
            flask seed-demo --seller-email me@example.com --account-id acct_123
        """
        from marketplace.models.user import User
        from marketplace.models.catalog import SellerAccount, Track

        # --- 1. Seller user ---
        seller = User.query.filter_by(email=seller_email).first()
        if seller:
            click.echo(f"Seller already exists: {seller_email}")
        else:
            seller = User(email=seller_email, display_name="Demo Seller")
            db.session.add(seller)
            db.session.flush()
            click.echo(f"Created seller: {seller_email}")

        # --- 2. Connect account ---
        account = SellerAccount.query.filter_by(seller_id=seller.id).first()
        if account is None:
            account = SellerAccount(seller_id=seller.id)
            db.session.add(account)
        account.stripe_account_id = account_id
        account.charges_enabled = True
        account.payouts_enabled = True
        account.details_submitted = True
        account.status = "active"

        # --- 3. Tracks ---
        tracks = [
            Track(seller_id=seller.id, title="Morning Calm", artist_name="Demo Seller", price_cents=299),
            Track(seller_id=seller.id, title="Deep Sleep Affirmations", artist_name="Demo Seller", price_cents=499),
        ]
        db.session.add_all(tracks)
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Seller:   {seller_email} (id: {seller.id})")
        click.echo(f"  Account:  {account_id}")
        for track in tracks:
            click.echo(f"  Track:    {track.title} ${track.price_cents / 100:.2f} (id: {track.id})")
        click.echo("=" * 60)

    @app.cli.command("replay-webhooks")
    @click.option("--limit", type=int, default=None, help="Replay at most this many events.")
    @click.option("--dry-run", is_flag=True, help="List failed events without reprocessing them.")
    def replay_webhooks(limit, dry_run):
        """Reprocess webhook events whose handler failed.

        Usage:
            flask replay-webhooks
            flask replay-webhooks --limit 10 --dry-run
        """
        from marketplace.services.stripe_service import replay_failed_events

        results = replay_failed_events(limit=limit, dry_run=dry_run)
        if not results:
            click.echo("No failed webhook events.")
            return

        for event_id, success, message in results:
            if success is None:
                label = "WOULD REPLAY"
            else:
                label = "OK" if success else "FAILED"
            click.echo(f"  {label:<12} {event_id}  {message}")

        if not dry_run:
            ok = sum(1 for _, success, _ in results if success)
            click.echo(f"Replayed {len(results)} events: {ok} succeeded, {len(results) - ok} failed")
