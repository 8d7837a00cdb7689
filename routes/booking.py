from flask import Blueprint, g, jsonify, request

from models import booking as booking_status
from models.booking import Booking
from services.bookings import cancel_booking, create_booking, get_booking, list_user_bookings
from utils.auth_context import login_required

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


def booking_to_dict(b: Booking) -> dict:
    return {
        "id": b.id,
        "booking_code": b.booking_code,
        "session_id": b.session_id,
        "user_id": b.user_id,
        "guest_count": b.guest_count,
        "slots": b.slots_consumed,
        "tickets_used": b.tickets_used,
        "discount_applied": b.discount_applied,
        "price_paid": b.price_paid,
        "guest_price_paid": b.guest_price_paid,
        "total_owed": b.total_owed,
        "payment_method": b.payment_method,
        "payment_status": b.payment_status,
        "payment_deadline": b.payment_deadline.isoformat() if b.payment_deadline else None,
        "cancelled_at": b.cancelled_at.isoformat() if b.cancelled_at else None,
        "created_at": b.created_at.isoformat() if b.created_at else None,
    }


@booking_bp.post("")
@login_required
def create():
    data = request.get_json(silent=True) or {}
    session_id = data.get("session_id")
    if not isinstance(session_id, int) or isinstance(session_id, bool):
        return jsonify(error="session_id (integer) required"), 400

    booking = create_booking(
        g.user.id,
        session_id,
        guest_count=data.get("guest_count", 0),
        payment_method=data.get("payment_method") or "stripe",
    )
    return jsonify(booking_to_dict(booking)), 201


@booking_bp.get("/me")
@login_required
def my_bookings():
    page = request.args.get("page", 1, type=int)
    per_page = request.args.get("per_page", 10, type=int)
    status = request.args.get("status")
    statuses = (booking_status.PENDING, booking_status.CONFIRMED, booking_status.CANCELLED, booking_status.REFUNDED)
    if status and status not in statuses:
        return jsonify(error=f"status must be one of: {', '.join(statuses)}"), 400

    rows, total = list_user_bookings(g.user.id, page=page, per_page=per_page, status=status)
    return jsonify(
        bookings=[booking_to_dict(b) for b in rows],
        total=total,
        page=max(page, 1),
    ), 200


@booking_bp.get("/<booking_id>")
@login_required
def detail(booking_id):
    return jsonify(booking_to_dict(get_booking(booking_id, g.user.id))), 200


@booking_bp.post("/<booking_id>/cancel")
@login_required
def cancel(booking_id):
    booking = cancel_booking(booking_id, g.user.id)
    return jsonify(booking_to_dict(booking)), 200
