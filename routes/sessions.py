from datetime import datetime, timedelta

from flask import Blueprint, g, jsonify, request
from sqlalchemy import select

from models import db
from models.db import utcnow
from models.session import Session
from security.rbac import require_roles
from utils.audit import log_event
from utils.auth_context import login_required

sessions_bp = Blueprint("sessions", __name__, url_prefix="/sessions")


def _parse_iso(dt_str: str):
    # Expect ISO format like "2026-01-20T18:00:00" (UTC)
    return datetime.fromisoformat(dt_str)


def _optional_non_negative_int(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    value = int(value)
    if value < 0:
        raise ValueError(key)
    return value


def session_to_dict(s: Session) -> dict:
    return {
        "id": s.id,
        "title": s.title,
        "location": s.location,
        "starts_at": s.starts_at.isoformat(),
        "courts": s.courts,
        "max_players_per_court": s.max_players_per_court,
        "total_slots": s.total_slots,
        "available_slots": s.available_slots,
        "price": s.price,
        "subscriber_cancellation_hours": s.subscriber_cancellation_hours,
        "drop_in_cancellation_hours": s.drop_in_cancellation_hours,
        "cancelled": s.cancelled,
    }


@sessions_bp.post("")
@require_roles("ORGANIZER")
def create_session():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    location = (data.get("location") or "").strip()
    starts_at = data.get("starts_at")

    if not title or not location or not starts_at:
        return jsonify(error="title, location, starts_at are required"), 400

    try:
        st = _parse_iso(starts_at)
    except (TypeError, ValueError):
        return jsonify(error="Invalid datetime format. Use ISO e.g. 2026-01-20T18:00:00"), 400
    if st.tzinfo is not None:
        return jsonify(error="starts_at must be a naive UTC datetime"), 400

    try:
        courts = int(data.get("courts") or 1)
        per_court = int(data.get("max_players_per_court") or 0)
        price = _optional_non_negative_int(data, "price")
        sub_hours = _optional_non_negative_int(data, "subscriber_cancellation_hours")
        drop_in_hours = _optional_non_negative_int(data, "drop_in_cancellation_hours")
    except (TypeError, ValueError):
        return jsonify(error="courts, max_players_per_court, price and cancellation hours must be non-negative integers"), 400

    if courts < 1 or per_court < 1:
        return jsonify(error="courts and max_players_per_court must be at least 1"), 400
    if st <= utcnow():
        return jsonify(error="starts_at must be in the future"), 400

    total = courts * per_court
    s = Session(
        organizer_id=g.user.id,
        title=title,
        location=location,
        starts_at=st,
        courts=courts,
        max_players_per_court=per_court,
        total_slots=total,
        available_slots=total,
        price=price,
        subscriber_cancellation_hours=sub_hours,
        drop_in_cancellation_hours=drop_in_hours,
    )
    db.session.add(s)
    db.session.commit()

    log_event("SESSION_CREATE", user_id=g.user.id, entity="session", entity_id=s.id,
              metadata={"total_slots": total})
    return jsonify(session_to_dict(s)), 201


@sessions_bp.get("")
@login_required
def list_sessions():
    # optional filter: date (YYYY-MM-DD); past sessions are hidden
    date_str = request.args.get("date")
    stmt = select(Session).where(Session.cancelled.is_(False), Session.starts_at >= utcnow())

    if date_str:
        try:
            day = datetime.fromisoformat(date_str)
        except ValueError:
            return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400
        start = datetime(day.year, day.month, day.day)
        stmt = stmt.where(Session.starts_at >= start, Session.starts_at < start + timedelta(days=1))

    rows = db.session.execute(stmt.order_by(Session.starts_at.asc())).scalars().all()
    return jsonify([session_to_dict(s) for s in rows]), 200


@sessions_bp.get("/<int:session_id>")
@login_required
def get_session(session_id):
    s = db.session.get(Session, session_id)
    if s is None:
        return jsonify(error="Session not found"), 404
    return jsonify(session_to_dict(s)), 200
