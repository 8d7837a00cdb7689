"""Booking transactions.

create_booking and cancel_booking each run as one unit of work. Capacity,
ticket balance and the booking row change together or not at all; the
payment gateway is only contacted after the local commit.
"""

import secrets
import string
import uuid
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import func, select

from models import db
from models import booking as booking_status
from models.booking import Booking
from models.db import utcnow
from models.session import Session
from services import settings
from services.capacity import lock_session, release_slots, reserve_slots
from services.errors import BadRequest, Conflict, Forbidden, NotFound
from services.policy import BookingPolicy, current_policy
from services.pricing import payment_deadline, quote_price
from services.tickets import deduct_ticket, has_active_subscription, lock_subscription, restore_ticket
from services.uow import unit_of_work
from utils.audit import record_event

BOOKING_CODE_PREFIX = "LB-"
BOOKING_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_booking_code() -> str:
    suffix = "".join(secrets.choice(BOOKING_CODE_ALPHABET) for _ in range(5))
    return f"{BOOKING_CODE_PREFIX}{suffix}"


def _unique_booking_code(attempts: int = 5) -> str:
    for _ in range(attempts):
        code = generate_booking_code()
        taken = db.session.execute(
            select(Booking.id).where(Booking.booking_code == code)
        ).first()
        if taken is None:
            return code
    raise Conflict("Could not allocate a booking code, please retry")


def _out_of_ticket_discount(policy: BookingPolicy) -> int:
    percent = settings.get_int(settings.OUT_OF_TICKET_DISCOUNT, policy.out_of_ticket_discount_percent)
    if not 0 <= percent <= 100:
        current_app.logger.warning("Ignoring out-of-range discount setting %s%%", percent)
        return policy.out_of_ticket_discount_percent
    return percent


def lock_booking(booking_id: str) -> Optional[Booking]:
    return db.session.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def has_active_booking(user_id: int, session_id: int) -> bool:
    count = db.session.execute(
        select(func.count(Booking.id)).where(
            Booking.user_id == user_id,
            Booking.session_id == session_id,
            Booking.cancelled_at.is_(None),
        )
    ).scalar_one()
    return count > 0


def create_booking(user_id: int, session_id: int, guest_count: int = 0, payment_method: str = "stripe",
                   *, policy: Optional[BookingPolicy] = None, now: Optional[datetime] = None) -> Booking:
    """Reserve 1 + guest_count slots on a session for a user.

    Raises NotFound (no session), BadRequest (bad input, cancelled or past
    session) or Conflict (duplicate booking, not enough slots, lost ticket
    race). Nothing is persisted unless every step succeeds.
    """
    policy = policy or current_policy()
    now = now or utcnow()

    if not isinstance(guest_count, int) or isinstance(guest_count, bool):
        raise BadRequest("guest_count must be an integer")
    if guest_count < 0 or guest_count > policy.max_guests:
        raise BadRequest(f"guest_count must be between 0 and {policy.max_guests}")
    if payment_method not in booking_status.PAYMENT_METHODS:
        raise BadRequest(f"payment_method must be one of: {', '.join(booking_status.PAYMENT_METHODS)}")

    with unit_of_work("You already have a booking for this session"):
        # held until commit: serializes every capacity change on this session
        session = lock_session(session_id)

        if session.cancelled:
            raise BadRequest("Session is cancelled")
        if session.starts_at.date() < now.date():
            raise BadRequest("Session is in the past")

        if has_active_booking(user_id, session_id):
            raise Conflict("You already have a booking for this session")

        slots_needed = 1 + guest_count
        if session.available_slots < slots_needed:
            raise Conflict(
                f"Not enough slots available. Need {slots_needed}, have {session.available_slots}",
                slots_needed=slots_needed,
                slots_available=session.available_slots,
            )

        # held until commit: a concurrent booking cannot spend the same ticket
        subscription = lock_subscription(user_id, active_only=True)
        base_price = session.price if session.price is not None else policy.default_session_price
        quote = quote_price(
            base_price,
            guest_count,
            has_subscription=subscription is not None,
            tickets_remaining=subscription.tickets_remaining if subscription else 0,
            discount_percent=_out_of_ticket_discount(policy),
            rounding=policy.rounding,
        )

        booking = Booking(
            id=str(uuid.uuid4()),
            user_id=user_id,
            session_id=session_id,
            booking_code=_unique_booking_code(),
            guest_count=guest_count,
            tickets_used=quote.tickets_to_consume,
            discount_applied=quote.discount_kind,
            price_paid=quote.owner_price,
            guest_price_paid=quote.guest_price,
            payment_method=payment_method,
            payment_status=booking_status.CONFIRMED if quote.is_free else booking_status.PENDING,
            payment_deadline=payment_deadline(quote, now, policy.payment_window_minutes),
        )
        db.session.add(booking)
        db.session.flush()

        if quote.tickets_to_consume:
            deduct_ticket(subscription, booking.id)

        reserve_slots(session, slots_needed)
        event = {
            "session_id": session_id,
            "booking_code": booking.booking_code,
            "slots": booking.slots_consumed,
            "discount": booking.discount_applied,
            "total_owed": booking.total_owed,
        }
        booking_id = booking.id

    record_event("BOOKING_CREATE", user_id=user_id, entity="booking", entity_id=booking_id, metadata=event)
    return booking


def release_booking(booking: Booking, now: datetime) -> None:
    """Reverse a live booking: restore its ticket, mark it cancelled, return its slots.

    Shared by user cancellation and the expiry reaper. The caller holds the
    booking row lock and commits.
    """
    if booking.tickets_used > 0:
        subscription = lock_subscription(booking.user_id)
        if subscription is None:
            current_app.logger.warning(
                "Booking %s used a ticket but user %s has no subscription, ticket not restored",
                booking.booking_code, booking.user_id,
            )
        else:
            restore_ticket(subscription, booking.id)

    booking.payment_status = booking_status.CANCELLED
    booking.cancelled_at = now
    release_slots(booking.session_id, booking.slots_consumed)


def cancellation_window(session: Session, is_subscriber: bool, policy: BookingPolicy):
    """Return (hours, label) of the window that applies to this user."""
    if is_subscriber:
        hours = session.subscriber_cancellation_hours
        if hours is None:
            hours = policy.subscriber_cancellation_hours
        return hours, "subscriber"
    hours = session.drop_in_cancellation_hours
    if hours is None:
        hours = policy.drop_in_cancellation_hours
    return hours, "drop_in"


def cancel_booking(booking_id: str, requesting_user_id: int, *, gateway=None,
                   policy: Optional[BookingPolicy] = None, now: Optional[datetime] = None) -> Booking:
    """Cancel a booking on behalf of its owner.

    Raises NotFound, Forbidden (not the owner) or BadRequest (already
    cancelled, cancellation window passed). A confirmed Stripe payment is
    refunded after the cancellation has been committed; refund failures are
    logged and never undo the cancellation.
    """
    # imported here: payments imports this module for the shared lock helper
    from services.payments import refund_booking

    policy = policy or current_policy()
    now = now or utcnow()

    with unit_of_work():
        booking = lock_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if booking.user_id != requesting_user_id:
            raise Forbidden("You can only cancel your own bookings")
        if booking.cancelled_at is not None:
            raise BadRequest("Booking already cancelled")

        session = db.session.get(Session, booking.session_id)
        if session is None:
            raise NotFound("Session not found")

        # subscriber status as of now, not as of booking time
        is_subscriber = has_active_subscription(booking.user_id)
        window_hours, window = cancellation_window(session, is_subscriber, policy)

        deadline = session.starts_at - timedelta(hours=window_hours)
        if now > deadline:
            hours_until_session = max(0, int((session.starts_at - now).total_seconds() // 3600))
            who = "Subscribers" if is_subscriber else "Drop-in players"
            raise BadRequest(
                f"Cancellation deadline has passed: {hours_until_session} hours until session, "
                f"{window_hours} required. {who} must cancel at least {window_hours} hours before the session.",
                hours_until_session=hours_until_session,
                required_hours=window_hours,
                window=window,
            )

        needs_refund = (
            booking.payment_method == "stripe"
            and booking.payment_status == booking_status.CONFIRMED
            and booking.stripe_payment_id is not None
        )
        release_booking(booking, now)
        event = {
            "session_id": booking.session_id,
            "slots_returned": booking.slots_consumed,
            "ticket_restored": booking.tickets_used > 0,
        }

    # the refund goes out even when the audit write fails
    record_event("BOOKING_CANCEL", user_id=requesting_user_id, entity="booking", entity_id=booking_id, metadata=event)

    if needs_refund:
        refund_booking(booking, gateway)

    return booking


def get_booking(booking_id: str, requesting_user_id: int) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.user_id != requesting_user_id:
        raise Forbidden("You can only view your own bookings")
    return booking


def list_user_bookings(user_id: int, page: int = 1, per_page: int = 10, status: Optional[str] = None):
    page = max(page, 1)
    per_page = min(max(per_page, 1), 50)

    filters = [Booking.user_id == user_id]
    if status:
        filters.append(Booking.payment_status == status)

    total = db.session.execute(select(func.count(Booking.id)).where(*filters)).scalar_one()
    rows = db.session.execute(
        select(Booking)
        .where(*filters)
        .order_by(Booking.created_at.desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
    ).scalars().all()
    return rows, total
