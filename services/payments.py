"""Payment collaborator.

The engine only needs three things from a gateway: open a charge for an
amount, learn that it succeeded (webhook), and refund it. Gateways are
built from explicit settings at app start-up and looked up through
`current_gateway()`, so tests can swap in a fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import stripe
from flask import current_app
from sqlalchemy import select

from models import db
from models import booking as booking_status
from models.booking import Booking
from models.db import utcnow
from models.payment import Payment
from services.bookings import lock_booking
from services.errors import BadRequest, Forbidden, InternalError, NotFound
from services.uow import unit_of_work
from utils.audit import record_event


@dataclass(frozen=True)
class Charge:
    charge_id: str
    client_secret: Optional[str]


class PaymentGateway(ABC):
    provider = "STRIPE"
    currency = "vnd"

    @abstractmethod
    def create_charge(self, amount: int, reference_id: str) -> Charge:
        """Open a charge; `reference_id` comes back in the success webhook."""
        ...

    @abstractmethod
    def refund(self, charge_id: str) -> None:
        ...


@dataclass(frozen=True)
class StripeSettings:
    secret_key: Optional[str]
    webhook_secret: Optional[str]
    currency: str = "vnd"

    @classmethod
    def from_config(cls, config) -> "StripeSettings":
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            currency=(config.get("STRIPE_CURRENCY") or "vnd").lower(),
        )


class StripeGateway(PaymentGateway):
    def __init__(self, settings: StripeSettings):
        self.settings = settings
        self.currency = settings.currency

    def _client_options(self):
        if not self.settings.secret_key:
            raise InternalError("Stripe secret key missing (STRIPE_SECRET_KEY)")
        return {"api_key": self.settings.secret_key}

    def create_charge(self, amount: int, reference_id: str) -> Charge:
        # VND is zero-decimal in Stripe, so amounts go over the wire unchanged
        intent = stripe.PaymentIntent.create(
            amount=amount,
            currency=self.currency,
            metadata={"booking_id": reference_id},
            automatic_payment_methods={"enabled": True},
            **self._client_options(),
        )
        return Charge(charge_id=intent.id, client_secret=intent.client_secret)

    def refund(self, charge_id: str) -> None:
        stripe.Refund.create(payment_intent=charge_id, **self._client_options())


def current_gateway() -> PaymentGateway:
    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        gateway = StripeGateway(StripeSettings.from_config(current_app.config))
        current_app.extensions["payment_gateway"] = gateway
    return gateway


def start_payment(booking_id: str, user_id: int, gateway: Optional[PaymentGateway] = None) -> Charge:
    """Open a gateway charge for everything a booking still owes."""
    gateway = gateway or current_gateway()

    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.user_id != user_id:
        raise Forbidden("You can only pay for your own bookings")
    if booking.cancelled_at is not None:
        raise BadRequest("Booking is cancelled")
    if booking.payment_status == booking_status.CONFIRMED:
        raise BadRequest("Booking is already paid")
    if booking.total_owed <= 0:
        raise BadRequest("Nothing to pay for this booking")

    amount = booking.total_owed
    reference_id = booking.id

    # no transaction (and so no lock) stays open across the gateway call
    db.session.rollback()
    try:
        charge = gateway.create_charge(amount, reference_id)
    except stripe.StripeError as exc:
        current_app.logger.error("Charge creation failed for booking %s: %s", reference_id, exc)
        raise InternalError("Payment provider unavailable, please retry") from exc

    with unit_of_work():
        db.session.add(Payment(
            booking_id=reference_id,
            provider=gateway.provider,
            amount=amount,
            currency=gateway.currency,
            status="INIT",
            charge_id=charge.charge_id,
        ))

    record_event("PAYMENT_STARTED", user_id=user_id, entity="booking", entity_id=reference_id,
                 metadata={"charge_id": charge.charge_id, "amount": amount})
    return charge


def confirm_payment(reference_id: str, charge_id: str) -> Optional[Booking]:
    """Apply a payment-succeeded notification. Safe to call repeatedly.

    Returns the booking, or None when the reference is unknown.
    """
    with unit_of_work():
        booking = lock_booking(reference_id)
        if booking is None:
            current_app.logger.warning("Payment %s references unknown booking %s", charge_id, reference_id)
            return None

        if booking.payment_status == booking_status.CONFIRMED:
            return booking

        if booking.cancelled_at is not None:
            # paid after the reaper released it; needs a manual refund decision
            current_app.logger.warning(
                "Payment %s arrived for cancelled booking %s", charge_id, booking.booking_code,
            )
            confirmed = False
        else:
            booking.payment_status = booking_status.CONFIRMED
            booking.stripe_payment_id = charge_id
            booking.payment_deadline = None
            confirmed = True

        payment = db.session.execute(
            select(Payment).where(Payment.charge_id == charge_id)
        ).scalar_one_or_none()
        if payment is None:
            payment = Payment(booking_id=booking.id, amount=booking.total_owed, charge_id=charge_id)
            db.session.add(payment)
        payment.status = "PAID"
        payment.paid_at = utcnow()

    action = "PAYMENT_CONFIRMED" if confirmed else "PAYMENT_FOR_CANCELLED_BOOKING"
    record_event(action, user_id=None, entity="booking", entity_id=reference_id, metadata={"charge_id": charge_id})
    return booking


def refund_booking(booking: Booking, gateway: Optional[PaymentGateway] = None) -> bool:
    """Best-effort refund of a cancelled booking's payment.

    Runs after the cancellation is committed. Failures are logged and
    audited for manual follow-up; they are never raised.
    """
    charge_id = booking.stripe_payment_id
    if not charge_id:
        return False
    booking_id = booking.id
    booking_code = booking.booking_code

    # no transaction (and so no lock) stays open across the gateway call
    db.session.rollback()
    try:
        gateway = gateway or current_gateway()
        gateway.refund(charge_id)
    except Exception as exc:
        current_app.logger.error("Refund failed for booking %s (charge %s): %s", booking_code, charge_id, exc)
        _mark_refund(charge_id, booking_id, "REFUND_FAILED")
        record_event("REFUND_FAILED", user_id=None, entity="booking", entity_id=booking_id,
                     metadata={"charge_id": charge_id, "error": str(exc)})
        return False

    _mark_refund(charge_id, booking_id, "REFUNDED")
    current_app.logger.info("Processed refund for cancelled booking %s (charge %s)", booking_code, charge_id)
    record_event("REFUND_ISSUED", user_id=None, entity="booking", entity_id=booking_id, metadata={"charge_id": charge_id})
    return True


def _mark_refund(charge_id: str, booking_id: str, status: str) -> None:
    with unit_of_work():
        payment = db.session.execute(
            select(Payment).where(Payment.charge_id == charge_id)
        ).scalar_one_or_none()
        if payment is not None:
            payment.status = status
            if status == "REFUNDED":
                payment.refunded_at = utcnow()
        if status == "REFUNDED":
            booking = lock_booking(booking_id)
            if booking is not None and booking.cancelled_at is not None:
                booking.payment_status = booking_status.REFUNDED
