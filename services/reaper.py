"""Expiry reaper: releases bookings whose payment window elapsed.

Each booking is released in its own transaction after re-checking, under
the row lock, that it is still pending, unpaid and not cancelled. A booking
cancelled by its owner (or by an overlapping sweep) in the meantime is
skipped, so running the sweep twice never releases anything twice.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from flask import current_app
from sqlalchemy import select

from models import db
from models import booking as booking_status
from models.booking import Booking
from models.db import utcnow
from services.bookings import lock_booking, release_booking
from services.uow import unit_of_work
from utils.audit import record_event


@dataclass
class ReapResult:
    released: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def _is_expired_unpaid(booking: Booking, now: datetime) -> bool:
    return (
        booking.payment_status == booking_status.PENDING
        and booking.payment_deadline is not None
        and booking.payment_deadline < now
        and booking.cancelled_at is None
    )


def find_expired_booking_ids(now: datetime) -> List[str]:
    return list(db.session.execute(
        select(Booking.id).where(
            Booking.payment_status == booking_status.PENDING,
            Booking.payment_deadline < now,
            Booking.cancelled_at.is_(None),
        ).order_by(Booking.payment_deadline.asc())
    ).scalars())


def _release_expired(booking_id: str, now: datetime) -> Optional[dict]:
    """Release one booking in its own transaction. Returns its audit details, or None if skipped."""
    with unit_of_work():
        booking = lock_booking(booking_id)
        if booking is None or not _is_expired_unpaid(booking, now):
            return None
        release_booking(booking, now)
        details = {
            "booking_code": booking.booking_code,
            "session_id": booking.session_id,
            "slots_returned": booking.slots_consumed,
            "ticket_restored": booking.tickets_used > 0,
        }
    return details


def release_unpaid_bookings(now: Optional[datetime] = None) -> ReapResult:
    now = now or utcnow()
    result = ReapResult()

    expired_ids = find_expired_booking_ids(now)
    # end the read transaction so each release below gets its own
    db.session.rollback()
    if not expired_ids:
        return result

    current_app.logger.info("Found %d expired unpaid bookings to release", len(expired_ids))

    for booking_id in expired_ids:
        try:
            details = _release_expired(booking_id, now)
        except Exception:
            # the next sweep retries this one
            current_app.logger.exception("Failed to release booking %s", booking_id)
            result.failed.append(booking_id)
            continue

        if details is None:
            result.skipped.append(booking_id)
            continue

        result.released.append(booking_id)
        current_app.logger.info(
            "Released booking %s - returned %d slots", details["booking_code"], details["slots_returned"],
        )
        # already committed: an audit failure is logged and the sweep moves on
        record_event("BOOKING_EXPIRED", user_id=None, entity="booking", entity_id=booking_id, metadata=details)

    return result
