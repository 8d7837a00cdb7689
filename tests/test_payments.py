import pytest
from sqlalchemy import select

from models import db
from models import booking as booking_status
from models.audit_log import AuditLog
from models.booking import Booking
from models.payment import Payment
from models.session import Session
from services.bookings import cancel_booking, create_booking
from services.errors import BadRequest, Forbidden, InternalError
from services.payments import StripeGateway, StripeSettings, confirm_payment, start_payment


def _pending_booking(make_user, make_session, **kwargs):
    user = make_user()
    s = make_session(**kwargs)
    return user, create_booking(user.id, s.id)


def test_start_payment_charges_total_owed(make_user, make_session, gateway):
    user, booking = _pending_booking(make_user, make_session, price=120000)

    charge = start_payment(booking.id, user.id, gateway)

    assert gateway.charges == [(charge.charge_id, 120000, booking.id)]
    payment = db.session.execute(select(Payment)).scalar_one()
    assert (payment.status, payment.amount, payment.booking_id) == ("INIT", 120000, booking.id)


def test_start_payment_for_someone_else(make_user, make_session, gateway):
    _, booking = _pending_booking(make_user, make_session)
    with pytest.raises(Forbidden):
        start_payment(booking.id, make_user().id, gateway)
    assert gateway.charges == []


def test_nothing_to_pay_for_ticket_booking(make_user, make_session, subscribe, gateway):
    user = make_user()
    subscribe(user, tickets=1)
    booking = create_booking(user.id, make_session().id)
    with pytest.raises(BadRequest):
        start_payment(booking.id, user.id, gateway)


def test_confirm_is_idempotent(make_user, make_session, gateway):
    user, booking = _pending_booking(make_user, make_session)
    charge = start_payment(booking.id, user.id, gateway)

    confirm_payment(booking.id, charge.charge_id)
    confirm_payment(booking.id, charge.charge_id)

    booking = db.session.get(Booking, booking.id)
    assert booking.payment_status == booking_status.CONFIRMED
    assert booking.payment_deadline is None
    assert booking.stripe_payment_id == charge.charge_id
    payments = db.session.execute(select(Payment)).scalars().all()
    assert [p.status for p in payments] == ["PAID"]


def test_confirm_unknown_booking_is_ignored(app):
    assert confirm_payment("00000000-0000-0000-0000-000000000000", "pi_x") is None


def test_payment_for_released_booking_is_audited_not_applied(make_user, make_session):
    user, booking = _pending_booking(make_user, make_session)
    cancel_booking(booking.id, user.id)

    confirm_payment(booking.id, "pi_late")

    booking = db.session.get(Booking, booking.id)
    assert booking.payment_status == booking_status.CANCELLED
    actions = set(db.session.execute(select(AuditLog.action)).scalars())
    assert "PAYMENT_FOR_CANCELLED_BOOKING" in actions


def test_cancel_paid_booking_refunds(make_user, make_session, gateway):
    user, booking = _pending_booking(make_user, make_session)
    charge = start_payment(booking.id, user.id, gateway)
    confirm_payment(booking.id, charge.charge_id)

    cancel_booking(booking.id, user.id, gateway=gateway)

    assert gateway.refunds == [charge.charge_id]
    booking = db.session.get(Booking, booking.id)
    assert booking.payment_status == booking_status.REFUNDED
    assert db.session.execute(select(Payment.status)).scalar_one() == "REFUNDED"


def test_refund_failure_keeps_cancellation(make_user, make_session, gateway):
    user, booking = _pending_booking(make_user, make_session)
    session_id = booking.session_id
    charge = start_payment(booking.id, user.id, gateway)
    confirm_payment(booking.id, charge.charge_id)
    gateway.fail_refunds = True

    cancelled = cancel_booking(booking.id, user.id, gateway=gateway)

    assert cancelled.cancelled_at is not None
    assert db.session.get(Booking, booking.id).payment_status == booking_status.CANCELLED
    assert db.session.get(Session, session_id).available_slots == 10
    assert db.session.execute(select(Payment.status)).scalar_one() == "REFUND_FAILED"
    actions = set(db.session.execute(select(AuditLog.action)).scalars())
    assert "REFUND_FAILED" in actions


def test_qr_transfer_cancellation_never_refunds(make_user, make_session, gateway):
    user = make_user()
    booking = create_booking(user.id, make_session().id, payment_method="qr_transfer")
    confirm_payment(booking.id, "manual_ref")

    cancel_booking(booking.id, user.id, gateway=gateway)
    assert gateway.refunds == []


def test_stripe_gateway_requires_key():
    gateway = StripeGateway(StripeSettings(secret_key=None, webhook_secret=None))
    with pytest.raises(InternalError):
        gateway.refund("pi_1")


def test_stripe_settings_from_config():
    settings = StripeSettings.from_config({"STRIPE_SECRET_KEY": "sk_test", "STRIPE_CURRENCY": "USD"})
    assert settings.secret_key == "sk_test"
    assert settings.currency == "usd"


def test_cancel_refunds_even_when_audit_fails(make_user, make_session, gateway, monkeypatch):
    user, booking = _pending_booking(make_user, make_session)
    booking_id = booking.id
    charge = start_payment(booking_id, user.id, gateway)
    confirm_payment(booking_id, charge.charge_id)

    import utils.audit as audit

    def audit_down(*args, **kwargs):
        raise RuntimeError("audit down")

    monkeypatch.setattr(audit, "log_event", audit_down)
    cancelled = cancel_booking(booking_id, user.id, gateway=gateway)

    assert cancelled.cancelled_at is not None
    assert gateway.refunds == [charge.charge_id]
    assert db.session.get(Booking, booking_id).payment_status == booking_status.REFUNDED
    assert db.session.execute(select(Payment.status)).scalar_one() == "REFUNDED"
