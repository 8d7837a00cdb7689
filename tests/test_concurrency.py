import threading

from sqlalchemy import func, select

from models import db
from models.booking import Booking
from models.session import Session
from models.subscription import Subscription
from services.bookings import create_booking
from services.errors import Conflict
from services.tickets import ledger_matches_balance


def _race(app, calls):
    """Run each call in its own thread and app context, released together."""
    barrier = threading.Barrier(len(calls))
    results = []
    lock = threading.Lock()

    def worker(fn):
        with app.app_context():
            barrier.wait()
            try:
                fn()
                outcome = "ok"
            except Conflict:
                outcome = "conflict"
            with lock:
                results.append(outcome)

    # nothing from this thread may hold the database while the workers run
    db.session.commit()
    threads = [threading.Thread(target=worker, args=(fn,)) for fn in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return sorted(results)


def test_last_slot_goes_to_exactly_one_user(app, make_user, make_session):
    s = make_session(per_court=1)
    a, b = make_user(), make_user()
    session_id, a_id, b_id = s.id, a.id, b.id

    results = _race(app, [
        lambda: create_booking(a_id, session_id),
        lambda: create_booking(b_id, session_id),
    ])

    assert results == ["conflict", "ok"]
    s = db.session.get(Session, session_id)
    assert s.available_slots == 0
    live = db.session.execute(
        select(func.count(Booking.id)).where(Booking.session_id == session_id)
    ).scalar_one()
    assert live == 1


def test_last_ticket_spent_once(app, make_user, make_session, subscribe):
    user = make_user()
    sub = subscribe(user, tickets=1)
    first, second = make_session(), make_session()
    user_id, sub_id, ids = user.id, sub.id, (first.id, second.id)

    results = _race(app, [
        lambda: create_booking(user_id, ids[0]),
        lambda: create_booking(user_id, ids[1]),
    ])

    # both succeed, but only one of them is covered by the ticket
    assert results == ["ok", "ok"]
    assert db.session.get(Subscription, sub_id).tickets_remaining == 0
    used = db.session.execute(
        select(func.sum(Booking.tickets_used)).where(Booking.user_id == user_id)
    ).scalar_one()
    assert used == 1
    assert ledger_matches_balance(sub_id)


def test_many_players_never_oversell(app, make_user, make_session):
    s = make_session(per_court=3)
    session_id = s.id
    user_ids = [make_user().id for _ in range(6)]

    results = _race(app, [
        (lambda uid=uid: create_booking(uid, session_id)) for uid in user_ids
    ])

    assert results.count("ok") == 3
    assert results.count("conflict") == 3
    assert db.session.get(Session, session_id).available_slots == 0
