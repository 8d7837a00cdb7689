from flask import Blueprint, g, jsonify, request

from services.tickets import get_balance, list_transactions
from utils.auth_context import login_required

tickets_bp = Blueprint("tickets", __name__, url_prefix="/tickets")


def transaction_to_dict(t) -> dict:
    return {
        "id": t.id,
        "transaction_type": t.transaction_type,
        "amount": t.amount,
        "balance_after": t.balance_after,
        "booking_id": t.booking_id,
        "notes": t.notes,
        "created_at": t.created_at.isoformat() if t.created_at else None,
    }


@tickets_bp.get("/balance")
@login_required
def balance():
    return jsonify(get_balance(g.user.id)), 200


@tickets_bp.get("/history")
@login_required
def history():
    page = request.args.get("page", 1, type=int)
    per_page = request.args.get("per_page", 20, type=int)
    rows, total = list_transactions(g.user.id, page=page, per_page=per_page)
    return jsonify(
        transactions=[transaction_to_dict(t) for t in rows],
        total=total,
        page=max(page, 1),
    ), 200
