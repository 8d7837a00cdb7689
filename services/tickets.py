"""Ticket ledger.

A subscription's `tickets_remaining` only ever changes together with one
appended TicketTransaction whose `amount` is the exact delta and whose
`balance_after` is the new balance. Replaying a subscription's entries in
order therefore reproduces its balance.

Functions without a leading `commit` note are primitives: they expect the
subscription row to be locked by the caller's transaction and never commit.
"""

from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func, select

from models import db
from models import subscription as sub_status
from models import ticket_transaction as tx_types
from models.subscription import Subscription
from models.ticket_transaction import BonusTicket, TicketTransaction
from services.errors import BadRequest, Conflict, NotFound
from services.uow import unit_of_work
from utils.audit import record_event

# Two invoices for the same subscription whose period ends this close
# together are the same invoice delivered twice.
DUPLICATE_PERIOD_TOLERANCE_SECONDS = 60


def lock_subscription(user_id: int, active_only: bool = False) -> Optional[Subscription]:
    stmt = select(Subscription).where(Subscription.user_id == user_id)
    if active_only:
        stmt = stmt.where(Subscription.status == sub_status.ACTIVE)
    return db.session.execute(
        stmt.with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()


def has_active_subscription(user_id: int) -> bool:
    count = db.session.execute(
        select(func.count(Subscription.id)).where(
            Subscription.user_id == user_id,
            Subscription.status == sub_status.ACTIVE,
        )
    ).scalar_one()
    return count > 0


def _append(subscription: Subscription, transaction_type: str, amount: int,
            booking_id=None, notes=None, admin_id=None) -> TicketTransaction:
    subscription.tickets_remaining += amount
    entry = TicketTransaction(
        user_id=subscription.user_id,
        subscription_id=subscription.id,
        booking_id=booking_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_after=subscription.tickets_remaining,
        notes=notes,
        admin_id=admin_id,
    )
    db.session.add(entry)
    return entry


def deduct_ticket(subscription: Subscription, booking_id: str) -> TicketTransaction:
    if subscription.tickets_remaining <= 0:
        # another transaction spent the last ticket first
        raise Conflict("No tickets remaining")
    return _append(subscription, tx_types.USED, -1, booking_id=booking_id, notes="Used for booking")


def restore_ticket(subscription: Subscription, booking_id: str, notes: str = "Restored from cancelled booking") -> TicketTransaction:
    return _append(subscription, tx_types.RESTORED, 1, booking_id=booking_id, notes=notes)


def expire_tickets(subscription: Subscription, notes: str = "Tickets expired") -> Optional[TicketTransaction]:
    if subscription.tickets_remaining <= 0:
        return None
    return _append(subscription, tx_types.EXPIRED, -subscription.tickets_remaining, notes=notes)


def grant_subscription_tickets(user_id: int, stripe_subscription_id: str, stripe_customer_id: Optional[str],
                               period_start: datetime, period_end: datetime,
                               tickets: int) -> Subscription:
    """Allocate a billing period's tickets (commits).

    Creates the subscription on first purchase, renews it otherwise. A
    duplicate delivery of an already processed invoice is a no-op.
    """
    with unit_of_work():
        sub = db.session.execute(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if sub is not None and sub.current_period_end is not None:
            drift = abs((period_end - sub.current_period_end).total_seconds())
            if drift < DUPLICATE_PERIOD_TOLERANCE_SECONDS:
                current_app.logger.info(
                    "Duplicate invoice for subscription %s (period end drift %ss), skipping",
                    stripe_subscription_id, int(drift),
                )
                return sub

        notes = "Subscription renewal"
        if sub is None:
            # user may be re-subscribing after a previous subscription ended
            sub = lock_subscription(user_id)
            notes = "Initial subscription purchase"
        if sub is None:
            sub = Subscription(user_id=user_id, status=sub_status.ACTIVE, tickets_remaining=0)
            db.session.add(sub)
            db.session.flush()

        sub.stripe_subscription_id = stripe_subscription_id
        if stripe_customer_id:
            sub.stripe_customer_id = stripe_customer_id
        sub.status = sub_status.ACTIVE
        sub.current_period_start = period_start
        sub.current_period_end = period_end
        _append(sub, tx_types.SUBSCRIPTION_GRANT, tickets, notes=notes)

    record_event("TICKETS_GRANTED", user_id=sub.user_id, entity="subscription", entity_id=sub.id,
                 metadata={"tickets": tickets, "balance": sub.tickets_remaining})
    return sub


def add_bonus_tickets(user_id: int, amount: int, bonus_type: str = "manual", note: Optional[str] = None,
                      admin_id: Optional[int] = None, referrer_id: Optional[int] = None,
                      year: Optional[int] = None) -> Subscription:
    """Grant bonus tickets and record the award (commits)."""
    if amount <= 0:
        raise BadRequest("amount must be positive")
    if bonus_type not in tx_types.BONUS_TYPES:
        raise BadRequest(f"Unknown bonus type: {bonus_type}")

    with unit_of_work():
        sub = lock_subscription(user_id)
        if sub is None:
            raise BadRequest("User does not have a subscription")
        _append(sub, f"bonus_{bonus_type}", amount, notes=note, admin_id=admin_id)
        db.session.add(BonusTicket(
            user_id=user_id,
            bonus_type=bonus_type,
            tickets=amount,
            note=note,
            referrer_id=referrer_id,
            granted_by=admin_id,
            year=year,
        ))

    record_event("TICKETS_BONUS", user_id=admin_id, entity="subscription", entity_id=sub.id,
                 metadata={"user_id": user_id, "bonus_type": bonus_type, "tickets": amount})
    return sub


def revoke_tickets(user_id: int, amount: int, reason: Optional[str] = None,
                   admin_id: Optional[int] = None) -> Subscription:
    """Remove up to `amount` tickets; the balance never goes below zero (commits)."""
    if amount <= 0:
        raise BadRequest("amount must be positive")

    with unit_of_work():
        sub = lock_subscription(user_id)
        if sub is None:
            raise BadRequest("User does not have a subscription")
        removed = min(amount, sub.tickets_remaining)
        # the entry records what was actually removed so the ledger replays exactly
        _append(sub, tx_types.REVOKED, -removed, notes=reason, admin_id=admin_id)

    record_event("TICKETS_REVOKED", user_id=admin_id, entity="subscription", entity_id=sub.id,
                 metadata={"user_id": user_id, "requested": amount, "removed": removed})
    return sub


def sync_subscription_status(stripe_subscription_id: str, status: str,
                             period_start: Optional[datetime] = None,
                             period_end: Optional[datetime] = None,
                             cancel_at_period_end: Optional[bool] = None) -> Optional[Subscription]:
    """Mirror billing-provider status changes (commits). Unknown subscriptions are ignored."""
    if status not in sub_status.STATUSES:
        raise BadRequest(f"Unknown subscription status: {status}")

    with unit_of_work():
        sub = db.session.execute(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == stripe_subscription_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sub is None:
            return None

        sub.status = status
        if period_start is not None:
            sub.current_period_start = period_start
        if period_end is not None:
            sub.current_period_end = period_end
        if cancel_at_period_end is not None:
            sub.auto_renew = not cancel_at_period_end
        if status in (sub_status.CANCELLED, sub_status.EXPIRED):
            sub.auto_renew = False
        if status == sub_status.EXPIRED:
            expire_tickets(sub, notes="Subscription expired")

    record_event("SUBSCRIPTION_STATUS", user_id=sub.user_id, entity="subscription", entity_id=sub.id,
                 metadata={"status": status})
    return sub


def get_balance(user_id: int) -> dict:
    sub = db.session.execute(
        select(Subscription).where(Subscription.user_id == user_id)
    ).scalar_one_or_none()
    return {
        "tickets_remaining": sub.tickets_remaining if sub else 0,
        "has_active_subscription": bool(sub and sub.is_active),
        "current_period_end": sub.current_period_end.isoformat() if sub and sub.current_period_end else None,
    }


def list_transactions(user_id: int, page: int = 1, per_page: int = 20):
    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)

    total = db.session.execute(
        select(func.count(TicketTransaction.id)).where(TicketTransaction.user_id == user_id)
    ).scalar_one()
    rows = db.session.execute(
        select(TicketTransaction)
        .where(TicketTransaction.user_id == user_id)
        .order_by(TicketTransaction.created_at.desc(), TicketTransaction.id.desc())
        .limit(per_page)
        .offset((page - 1) * per_page)
    ).scalars().all()
    return rows, total


def replay_balance(subscription_id: int) -> int:
    """Rebuild a balance from the ledger alone.

    Raises Conflict if any entry's balance_after disagrees with the running
    sum, i.e. the ledger was written out of step with the balance.
    """
    if db.session.get(Subscription, subscription_id) is None:
        raise NotFound("Subscription not found")

    entries = db.session.execute(
        select(TicketTransaction)
        .where(TicketTransaction.subscription_id == subscription_id)
        .order_by(TicketTransaction.id.asc())
    ).scalars()

    balance = 0
    for entry in entries:
        balance += entry.amount
        if entry.balance_after != balance:
            raise Conflict(
                "Ticket ledger is inconsistent",
                transaction_id=entry.id,
                expected=balance,
                recorded=entry.balance_after,
            )
    return balance


def ledger_matches_balance(subscription_id: int) -> bool:
    sub = db.session.get(Subscription, subscription_id)
    if sub is None:
        raise NotFound("Subscription not found")
    try:
        return replay_balance(subscription_id) == sub.tickets_remaining
    except Conflict:
        return False
