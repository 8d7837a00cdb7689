import json
from datetime import datetime, timezone

import stripe
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select

from models import db
from models import subscription as sub_status
from models.subscription import Subscription
from services.errors import BadRequest
from services.payments import confirm_payment
from services.policy import current_policy
from services.tickets import grant_subscription_tickets, sync_subscription_status

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

STRIPE_SUBSCRIPTION_STATUS = {
    "active": sub_status.ACTIVE,
    "trialing": sub_status.ACTIVE,
    "past_due": sub_status.PAST_DUE,
    "unpaid": sub_status.PAST_DUE,
    "incomplete": sub_status.PAST_DUE,
    "canceled": sub_status.CANCELLED,
    "paused": sub_status.CANCELLED,
    "incomplete_expired": sub_status.EXPIRED,
}


def _ts(value):
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _invoice_subscription(invoice: dict):
    """(subscription id, subscription metadata) across old and new invoice shapes."""
    details = invoice.get("subscription_details") or {}
    parent = (invoice.get("parent") or {}).get("subscription_details") or {}
    subscription_id = invoice.get("subscription") or parent.get("subscription")
    if isinstance(subscription_id, dict):
        subscription_id = subscription_id.get("id")
    metadata = details.get("metadata") or parent.get("metadata") or {}
    return subscription_id, metadata


def _invoice_period(invoice: dict):
    lines = (invoice.get("lines") or {}).get("data") or []
    period = (lines[0].get("period") if lines else None) or {}
    return _ts(period.get("start")), _ts(period.get("end"))


def _user_for_invoice(subscription_id: str, customer_id, metadata: dict):
    existing = db.session.execute(
        select(Subscription.user_id).where(Subscription.stripe_subscription_id == subscription_id)
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    if metadata.get("user_id"):
        try:
            return int(metadata["user_id"])
        except (TypeError, ValueError):
            current_app.logger.warning("Invalid user_id %r in subscription metadata", metadata["user_id"])

    if customer_id:
        return db.session.execute(
            select(Subscription.user_id).where(Subscription.stripe_customer_id == customer_id)
        ).scalar_one_or_none()
    return None


def _handle_payment_succeeded(intent: dict):
    booking_id = (intent.get("metadata") or {}).get("booking_id")
    if not booking_id:
        raise BadRequest("No booking_id in PaymentIntent metadata")
    confirm_payment(booking_id, intent["id"])


def _handle_payment_failed(intent: dict):
    # the booking stays pending so the user can retry until the deadline
    current_app.logger.warning(
        "Payment failed for booking %s (PaymentIntent %s), user can retry before deadline",
        (intent.get("metadata") or {}).get("booking_id"), intent.get("id"),
    )


def _handle_invoice_paid(invoice: dict):
    subscription_id, metadata = _invoice_subscription(invoice)
    if not subscription_id:
        current_app.logger.debug("Invoice %s has no subscription, skipping", invoice.get("id"))
        return

    customer_id = invoice.get("customer")
    user_id = _user_for_invoice(subscription_id, customer_id, metadata)
    if user_id is None:
        current_app.logger.error(
            "Cannot determine user for subscription %s, customer %s", subscription_id, customer_id,
        )
        raise BadRequest("Cannot determine user for subscription")

    period_start, period_end = _invoice_period(invoice)
    if period_start is None or period_end is None:
        raise BadRequest("Invoice has no billing period")

    grant_subscription_tickets(
        user_id,
        subscription_id,
        customer_id,
        period_start,
        period_end,
        current_policy().subscription_tickets,
    )


def _handle_invoice_payment_failed(invoice: dict):
    subscription_id, _ = _invoice_subscription(invoice)
    if not subscription_id:
        return
    if sync_subscription_status(subscription_id, sub_status.PAST_DUE) is not None:
        current_app.logger.warning("Payment failed for subscription %s, marked as past_due", subscription_id)


def _handle_subscription_updated(subscription: dict):
    status = STRIPE_SUBSCRIPTION_STATUS.get(subscription.get("status"))
    if status is None:
        current_app.logger.warning(
            "Unknown Stripe status %r for subscription %s", subscription.get("status"), subscription.get("id"),
        )
        return
    sync_subscription_status(
        subscription["id"],
        status,
        period_start=_ts(subscription.get("current_period_start")),
        period_end=_ts(subscription.get("current_period_end")),
        cancel_at_period_end=subscription.get("cancel_at_period_end"),
    )


def _handle_subscription_deleted(subscription: dict):
    sync_subscription_status(subscription["id"], sub_status.EXPIRED)


EVENT_HANDLERS = {
    "payment_intent.succeeded": _handle_payment_succeeded,
    "payment_intent.payment_failed": _handle_payment_failed,
    "invoice.paid": _handle_invoice_paid,
    "invoice.payment_failed": _handle_invoice_payment_failed,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
}


def handle_event(event: dict) -> bool:
    """Dispatch a verified event. Returns False for event types we ignore."""
    handler = EVENT_HANDLERS.get(event.get("type"))
    if handler is None:
        current_app.logger.debug("Unhandled webhook event type: %s", event.get("type"))
        return False
    handler(event["data"]["object"])
    return True


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.get_data(as_text=True)

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500
    if not sig_header:
        return jsonify(error="Missing Stripe-Signature header"), 400

    try:
        stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    # dispatch on the plain JSON body; the signature covers exactly these bytes
    event = json.loads(payload)
    current_app.logger.info("Received Stripe webhook: %s (%s)", event.get("type"), event.get("id"))
    handle_event(event)
    return jsonify(received=True), 200
