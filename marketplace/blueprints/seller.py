"""Seller blueprint — /api/seller/*

- GET /api/seller/earnings — ledger totals for the signed-in seller
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from marketplace.services.earnings_service import summarize_seller_earnings

seller_bp = Blueprint("seller", __name__, url_prefix="/api/seller")


@seller_bp.route("/earnings")
@login_required
def earnings():
    summary = summarize_seller_earnings(current_user.id)
    return jsonify({"sellerId": current_user.id, "earnings": summary}), 200
