import json

from flask import Blueprint, g, jsonify, request
from sqlalchemy import func, select

from models import db
from models.audit_log import AuditLog
from models.user import Role, User
from security.rbac import require_roles
from services import settings
from services.tickets import add_bonus_tickets, revoke_tickets
from utils.audit import log_event

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

# settings an admin may change at runtime, with their allowed range
EDITABLE_SETTINGS = {
    settings.OUT_OF_TICKET_DISCOUNT: (0, 100),
    settings.BIRTHDAY_BONUS_TICKETS: (0, 10),
    settings.BIRTHDAY_ACCOUNT_AGE_DAYS: (0, 3650),
}


def _positive_amount(data: dict):
    amount = data.get("amount")
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        return None
    return amount


def _require_user(user_id: int):
    return db.session.get(User, user_id)


@admin_bp.post("/users/<int:user_id>/tickets/grant")
@require_roles("ADMIN")
def grant_tickets(user_id: int):
    data = request.get_json(silent=True) or {}
    amount = _positive_amount(data)
    if amount is None:
        return jsonify(error="amount must be a positive integer"), 400
    if _require_user(user_id) is None:
        return jsonify(error="User not found"), 404

    sub = add_bonus_tickets(
        user_id,
        amount,
        bonus_type=data.get("bonus_type") or "manual",
        note=(data.get("note") or "").strip() or None,
        admin_id=g.user.id,
    )
    return jsonify(user_id=user_id, tickets_remaining=sub.tickets_remaining), 200


@admin_bp.post("/users/<int:user_id>/tickets/revoke")
@require_roles("ADMIN")
def revoke(user_id: int):
    data = request.get_json(silent=True) or {}
    amount = _positive_amount(data)
    if amount is None:
        return jsonify(error="amount must be a positive integer"), 400
    if _require_user(user_id) is None:
        return jsonify(error="User not found"), 404

    sub = revoke_tickets(user_id, amount, reason=(data.get("reason") or "").strip() or None, admin_id=g.user.id)
    return jsonify(user_id=user_id, tickets_remaining=sub.tickets_remaining), 200


@admin_bp.post("/users/<int:user_id>/roles")
@require_roles("ADMIN")
def update_user_roles(user_id: int):
    data = request.get_json(silent=True) or {}
    roles = data.get("roles")
    if not isinstance(roles, list) or not roles:
        return jsonify(error="roles must be a non-empty list"), 400

    role_names = {name.strip().upper() for name in roles if isinstance(name, str) and name.strip()}
    if not role_names:
        return jsonify(error="roles must include valid role names"), 400

    user = _require_user(user_id)
    if not user:
        return jsonify(error="User not found"), 404

    available_roles = db.session.execute(select(Role).where(Role.name.in_(role_names))).scalars().all()
    missing = role_names - {r.name for r in available_roles}
    if missing:
        return jsonify(error="Unknown role(s)", missing=sorted(missing)), 400

    if user.id == g.user.id and "ADMIN" not in role_names:
        return jsonify(error="Cannot remove your own ADMIN role"), 403

    user.roles = list(available_roles)
    db.session.commit()

    log_event("ADMIN_UPDATE_ROLES", user_id=g.user.id, entity="user", entity_id=user.id,
              metadata={"roles": sorted(role_names)})
    return jsonify(message="Roles updated", roles=sorted(role_names)), 200


@admin_bp.put("/settings/<key>")
@require_roles("ADMIN")
def update_setting(key: str):
    if key not in EDITABLE_SETTINGS:
        return jsonify(error="Unknown setting"), 404

    data = request.get_json(silent=True) or {}
    value = data.get("value")
    low, high = EDITABLE_SETTINGS[key]
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        return jsonify(error=f"value must be an integer between {low} and {high}"), 400

    settings.set_value(key, value, description=data.get("description"))
    log_event("ADMIN_UPDATE_SETTING", user_id=g.user.id, entity="setting", entity_id=key,
              metadata={"value": value})
    return jsonify(key=key, value=value), 200


@admin_bp.get("/audit-logs")
@require_roles("ADMIN")
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    user_id = request.args.get("user_id", type=int)
    entity_id = request.args.get("entity_id")

    stmt = select(AuditLog)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)

    rows = db.session.execute(stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit)).scalars()
    total = db.session.execute(select(func.count(AuditLog.id))).scalar_one()

    return jsonify(total=total, logs=[
        {
            "id": r.id,
            "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            "user_id": r.user_id,
            "action": r.action,
            "entity": r.entity,
            "entity_id": r.entity_id,
            "ip": r.ip,
            "metadata": json.loads(r.metadata_json) if r.metadata_json else None,
        }
        for r in rows
    ]), 200
