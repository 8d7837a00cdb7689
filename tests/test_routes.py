import hashlib
import hmac
import json
import time
from datetime import timedelta

from sqlalchemy import select

from models import db
from models import booking as booking_status
from models.booking import Booking
from models.db import utcnow
from models.subscription import Subscription
from tests.conftest import WEBHOOK_SECRET


def _signed(payload: dict):
    body = json.dumps(payload)
    ts = int(time.time())
    sig = hmac.new(WEBHOOK_SECRET.encode(), f"{ts}.{body}".encode(), hashlib.sha256).hexdigest()
    return body, {"Stripe-Signature": f"t={ts},v1={sig}", "Content-Type": "application/json"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_requires_bearer_token(client):
    assert client.get("/bookings/me").status_code == 401
    assert client.get("/bookings/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_only_organizers_create_sessions(client, make_user, auth_headers):
    body = {
        "title": "Sunday doubles",
        "location": "Court B",
        "starts_at": (utcnow() + timedelta(days=2)).replace(microsecond=0).isoformat(),
        "courts": 2,
        "max_players_per_court": 4,
    }
    player = make_user()
    assert client.post("/sessions", json=body, headers=auth_headers(player)).status_code == 403

    organizer = make_user(roles=("ORGANIZER",))
    resp = client.post("/sessions", json=body, headers=auth_headers(organizer))
    assert resp.status_code == 201
    data = resp.get_json()
    assert data["total_slots"] == 8
    assert data["available_slots"] == 8

    listed = client.get("/sessions", headers=auth_headers(player)).get_json()
    assert [s["id"] for s in listed] == [data["id"]]


def test_session_validation(client, make_user, auth_headers):
    headers = auth_headers(make_user(roles=("ORGANIZER",)))
    resp = client.post("/sessions", json={"title": "x", "location": "y", "starts_at": "tomorrow"}, headers=headers)
    assert resp.status_code == 400


def test_book_view_and_cancel_flow(client, make_user, make_session, subscribe, auth_headers):
    user = make_user()
    subscribe(user, tickets=2)
    s = make_session()
    headers = auth_headers(user)

    resp = client.post("/bookings", json={"session_id": s.id, "guest_count": 1}, headers=headers)
    assert resp.status_code == 201
    created = resp.get_json()
    assert created["discount_applied"] == "ticket"
    assert created["total_owed"] == 100000
    assert created["payment_status"] == booking_status.PENDING

    dup = client.post("/bookings", json={"session_id": s.id}, headers=headers)
    assert dup.status_code == 409
    assert dup.get_json()["error"] == "You already have a booking for this session"

    mine = client.get("/bookings/me", headers=headers).get_json()
    assert mine["total"] == 1

    assert client.get(f"/bookings/{created['id']}", headers=auth_headers(make_user())).status_code == 403

    resp = client.post(f"/bookings/{created['id']}/cancel", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["payment_status"] == booking_status.CANCELLED

    balance = client.get("/tickets/balance", headers=headers).get_json()
    assert balance["tickets_remaining"] == 2
    history = client.get("/tickets/history", headers=headers).get_json()
    assert [t["transaction_type"] for t in history["transactions"]] == ["restored", "used", "subscription_grant"]


def test_full_session_returns_slot_counts(client, make_user, make_session, auth_headers):
    s = make_session(per_court=1)
    resp = client.post("/bookings", json={"session_id": s.id, "guest_count": 1}, headers=auth_headers(make_user()))
    assert resp.status_code == 409
    assert resp.get_json()["slots_needed"] == 2
    assert resp.get_json()["slots_available"] == 1


def test_late_cancel_returns_window_details(client, make_user, make_session, auth_headers):
    user = make_user()
    s = make_session(starts_in=timedelta(hours=5))
    headers = auth_headers(user)
    booking_id = client.post("/bookings", json={"session_id": s.id}, headers=headers).get_json()["id"]

    resp = client.post(f"/bookings/{booking_id}/cancel", headers=headers)
    assert resp.status_code == 400
    data = resp.get_json()
    assert data["window"] == "drop_in"
    assert data["required_hours"] == 48


def test_payment_intent_then_webhook_confirms(client, make_user, make_session, auth_headers, gateway):
    user = make_user()
    s = make_session()
    headers = auth_headers(user)
    booking_id = client.post("/bookings", json={"session_id": s.id}, headers=headers).get_json()["id"]

    resp = client.post("/payments/intent", json={"booking_id": booking_id}, headers=headers)
    assert resp.status_code == 200
    intent_id = resp.get_json()["payment_intent_id"]

    body, sig_headers = _signed({
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "metadata": {"booking_id": booking_id}}},
    })
    resp = client.post("/webhooks/stripe", data=body, headers=sig_headers)
    assert resp.status_code == 200

    assert db.session.get(Booking, booking_id).payment_status == booking_status.CONFIRMED


def test_webhook_rejects_bad_signature(client):
    body, headers = _signed({"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {}}})
    headers["Stripe-Signature"] = headers["Stripe-Signature"][:-4] + "0000"
    assert client.post("/webhooks/stripe", data=body, headers=headers).status_code == 400
    assert client.post("/webhooks/stripe", data=body).status_code == 400


def test_invoice_paid_grants_then_subscription_deleted_expires(client, make_user):
    user = make_user()
    start = int(time.time())
    invoice = {
        "id": "in_1",
        "customer": "cus_9",
        "subscription": "sub_9",
        "subscription_details": {"metadata": {"user_id": str(user.id)}},
        "lines": {"data": [{"period": {"start": start, "end": start + 90 * 86400}}]},
    }
    for _ in range(2):
        body, headers = _signed({"id": "evt_inv", "type": "invoice.paid", "data": {"object": invoice}})
        assert client.post("/webhooks/stripe", data=body, headers=headers).status_code == 200

    sub = db.session.execute(select(Subscription).filter_by(user_id=user.id)).scalar_one()
    assert sub.tickets_remaining == 10
    assert sub.stripe_customer_id == "cus_9"

    body, headers = _signed({
        "id": "evt_del",
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_9", "status": "canceled"}},
    })
    assert client.post("/webhooks/stripe", data=body, headers=headers).status_code == 200
    db.session.refresh(sub)
    assert sub.status == "expired"
    assert sub.tickets_remaining == 0


def test_admin_grant_and_revoke(client, make_user, subscribe, auth_headers):
    admin = make_user(roles=("ADMIN",))
    user = make_user()
    subscribe(user, tickets=1)
    headers = auth_headers(admin)

    resp = client.post(f"/admin/users/{user.id}/tickets/grant", json={"amount": 3, "note": "league winner"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["tickets_remaining"] == 4

    resp = client.post(f"/admin/users/{user.id}/tickets/revoke", json={"amount": 2}, headers=headers)
    assert resp.get_json()["tickets_remaining"] == 2

    assert client.post(f"/admin/users/{user.id}/tickets/grant", json={"amount": 0}, headers=headers).status_code == 400
    assert client.post(
        f"/admin/users/{user.id}/tickets/grant", json={"amount": 1}, headers=auth_headers(user)
    ).status_code == 403


def test_admin_updates_discount_setting(client, make_user, make_session, subscribe, auth_headers):
    admin = make_user(roles=("ADMIN",))
    headers = auth_headers(admin)
    key = "subscriber_out_of_ticket_discount_percent"

    assert client.put(f"/admin/settings/{key}", json={"value": 150}, headers=headers).status_code == 400
    assert client.put(f"/admin/settings/{key}", json={"value": 50}, headers=headers).status_code == 200

    user = make_user()
    subscribe(user, tickets=0)
    resp = client.post("/bookings", json={"session_id": make_session().id}, headers=auth_headers(user))
    assert resp.get_json()["price_paid"] == 50000

    logs = client.get("/admin/audit-logs?action=ADMIN_UPDATE_SETTING", headers=headers).get_json()
    assert logs["logs"][0]["metadata"] == {"value": 50}
