from flask import Blueprint, g, jsonify, request

from services.payments import start_payment
from utils.auth_context import login_required

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/intent")
@login_required
def create_intent():
    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    if not booking_id:
        return jsonify(error="booking_id required"), 400

    charge = start_payment(str(booking_id), g.user.id)
    return jsonify(payment_intent_id=charge.charge_id, client_secret=charge.client_secret), 200
