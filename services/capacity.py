"""Capacity store: the only code allowed to move a session's available_slots.

Callers must already be inside a transaction. `lock_session` takes the row
lock (SELECT ... FOR UPDATE) that serializes every capacity change on a
session until commit or rollback.
"""

from sqlalchemy import select, update

from models import db
from models.session import Session
from services.errors import Conflict, NotFound


def lock_session(session_id: int) -> Session:
    session = db.session.execute(
        select(Session)
        .where(Session.id == session_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if session is None:
        raise NotFound("Session not found")
    return session


def reserve_slots(session: Session, count: int) -> None:
    """Take `count` slots from a session locked by `lock_session`."""
    if session.available_slots < count:
        raise Conflict(
            f"Not enough slots available. Need {count}, have {session.available_slots}",
            slots_needed=count,
            slots_available=session.available_slots,
        )

    result = db.session.execute(
        update(Session)
        .where(Session.id == session.id, Session.available_slots >= count)
        .values(available_slots=Session.available_slots - count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise Conflict("Not enough slots available", slots_needed=count)
    db.session.refresh(session, attribute_names=["available_slots"])


def release_slots(session_id: int, count: int) -> None:
    """Give `count` slots back. A plain atomic increment; the check constraint
    rejects a double release that would exceed total_slots."""
    result = db.session.execute(
        update(Session)
        .where(Session.id == session_id)
        .values(available_slots=Session.available_slots + count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Session not found")
