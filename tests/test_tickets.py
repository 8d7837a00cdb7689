from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from models import db
from models import subscription as sub_status
from models.subscription import Subscription
from models.ticket_transaction import BonusTicket, TicketTransaction
from services import settings
from services.birthday import allocate_birthday_tickets
from services.errors import BadRequest, Conflict
from services.tickets import (
    add_bonus_tickets,
    get_balance,
    grant_subscription_tickets,
    list_transactions,
    replay_balance,
    revoke_tickets,
    sync_subscription_status,
)


def _entries(sub_id):
    return db.session.execute(
        select(TicketTransaction).where(TicketTransaction.subscription_id == sub_id).order_by(TicketTransaction.id)
    ).scalars().all()


def test_first_grant_creates_subscription(make_user):
    user = make_user()
    start = datetime(2026, 1, 1)
    sub = grant_subscription_tickets(user.id, "sub_1", "cus_1", start, start + timedelta(days=90), 10)

    assert sub.status == sub_status.ACTIVE
    assert sub.tickets_remaining == 10
    [entry] = _entries(sub.id)
    assert (entry.transaction_type, entry.amount, entry.balance_after) == ("subscription_grant", 10, 10)
    assert entry.notes == "Initial subscription purchase"


def test_duplicate_invoice_is_ignored_and_renewal_adds(make_user):
    user = make_user()
    start = datetime(2026, 1, 1)
    end = start + timedelta(days=90)
    grant_subscription_tickets(user.id, "sub_1", "cus_1", start, end, 10)
    grant_subscription_tickets(user.id, "sub_1", "cus_1", start, end + timedelta(seconds=30), 10)
    sub = grant_subscription_tickets(user.id, "sub_1", "cus_1", end, end + timedelta(days=90), 10)

    assert sub.tickets_remaining == 20
    assert sub.current_period_end == end + timedelta(days=90)
    assert [e.notes for e in _entries(sub.id)] == ["Initial subscription purchase", "Subscription renewal"]
    assert replay_balance(sub.id) == 20


def test_bonus_and_revoke_keep_ledger_exact(make_user, subscribe):
    user, admin = make_user(), make_user(roles=("ADMIN",))
    sub = subscribe(user, tickets=2)

    add_bonus_tickets(user.id, 3, bonus_type="referral", note="Invited a friend", admin_id=admin.id)
    revoke_tickets(user.id, 10, reason="abuse", admin_id=admin.id)

    sub = db.session.get(Subscription, sub.id)
    assert sub.tickets_remaining == 0
    entries = _entries(sub.id)
    assert [(e.transaction_type, e.amount, e.balance_after) for e in entries] == [
        ("subscription_grant", 2, 2),
        ("bonus_referral", 3, 5),
        ("revoked", -5, 0),
    ]
    assert entries[2].admin_id == admin.id
    assert replay_balance(sub.id) == 0
    assert db.session.execute(select(BonusTicket)).scalar_one().bonus_type == "referral"


def test_bonus_requires_subscription(make_user):
    with pytest.raises(BadRequest):
        add_bonus_tickets(make_user().id, 1)


@pytest.mark.parametrize("amount", [0, -2])
def test_amount_must_be_positive(make_user, subscribe, amount):
    user = make_user()
    subscribe(user)
    with pytest.raises(BadRequest):
        revoke_tickets(user.id, amount)


def test_tampered_ledger_detected(make_user, subscribe):
    user = make_user()
    sub = subscribe(user, tickets=4)
    entry = _entries(sub.id)[0]
    entry.balance_after = 7
    db.session.commit()

    with pytest.raises(Conflict) as exc:
        replay_balance(sub.id)
    assert exc.value.details["expected"] == 4


def test_expired_subscription_forfeits_tickets(make_user, subscribe):
    user = make_user()
    sub = subscribe(user, tickets=5)

    sync_subscription_status(sub.stripe_subscription_id, sub_status.EXPIRED)

    sub = db.session.get(Subscription, sub.id)
    assert sub.status == sub_status.EXPIRED
    assert sub.tickets_remaining == 0
    assert sub.auto_renew is False
    assert _entries(sub.id)[-1].transaction_type == "expired"
    assert replay_balance(sub.id) == 0


def test_past_due_keeps_tickets_but_blocks_use(make_user, subscribe):
    user = make_user()
    sub = subscribe(user, tickets=5)
    sync_subscription_status(sub.stripe_subscription_id, sub_status.PAST_DUE, cancel_at_period_end=True)

    balance = get_balance(user.id)
    assert balance["tickets_remaining"] == 5
    assert balance["has_active_subscription"] is False


def test_unknown_subscription_sync_is_ignored(app):
    assert sync_subscription_status("sub_missing", sub_status.CANCELLED) is None


def test_history_is_newest_first(make_user, subscribe):
    user = make_user()
    subscribe(user, tickets=1)
    add_bonus_tickets(user.id, 2)

    rows, total = list_transactions(user.id, page=1, per_page=1)
    assert total == 2
    assert rows[0].transaction_type == "bonus_manual"


def test_birthday_bonus_once_per_year(make_user, subscribe):
    today = date(2026, 6, 15)
    old_account = datetime(2025, 1, 1)
    celebrant = make_user(birthday=date(1990, 6, 15), created_at=old_account)
    newcomer = make_user(birthday=date(1991, 6, 15), created_at=datetime(2026, 6, 1))
    no_sub = make_user(birthday=date(1992, 6, 15), created_at=old_account)
    other_day = make_user(birthday=date(1990, 6, 16), created_at=old_account)
    for u in (celebrant, newcomer, other_day):
        subscribe(u, tickets=0)

    assert allocate_birthday_tickets(today) == 1
    assert allocate_birthday_tickets(today) == 0

    assert get_balance(celebrant.id)["tickets_remaining"] == 1
    assert get_balance(newcomer.id)["tickets_remaining"] == 0
    assert get_balance(no_sub.id)["tickets_remaining"] == 0
    assert get_balance(other_day.id)["tickets_remaining"] == 0
    bonus = db.session.execute(select(BonusTicket)).scalar_one()
    assert (bonus.user_id, bonus.bonus_type, bonus.year) == (celebrant.id, "birthday", 2026)


def test_birthday_bonus_size_from_settings(make_user, subscribe):
    user = make_user(birthday=date(1990, 3, 1), created_at=datetime(2020, 1, 1))
    subscribe(user, tickets=0)
    settings.set_value(settings.BIRTHDAY_BONUS_TICKETS, 2)

    assert allocate_birthday_tickets(date(2026, 3, 1)) == 1
    assert get_balance(user.id)["tickets_remaining"] == 2
