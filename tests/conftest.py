from datetime import timedelta

import pytest

from app import create_app
from config import Config
from models import db
from models.db import utcnow
from models.session import Session
from models.user import User
from security.tokens import issue_token
from services.payments import Charge, PaymentGateway
from services.tickets import grant_subscription_tickets
from utils.seed import get_role

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(PaymentGateway):
    def __init__(self):
        self.charges = []
        self.refunds = []
        self.fail_refunds = False

    def create_charge(self, amount, reference_id):
        charge_id = f"pi_test_{len(self.charges) + 1}"
        self.charges.append((charge_id, amount, reference_id))
        return Charge(charge_id=charge_id, client_secret=f"{charge_id}_secret")

    def refund(self, charge_id):
        if self.fail_refunds:
            raise RuntimeError("gateway unavailable")
        self.refunds.append(charge_id)


@pytest.fixture
def app(tmp_path):
    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "test.db")
        CREATE_TABLES = True
        SCHEDULER_ENABLED = False
        STRIPE_SECRET_KEY = None
        STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET

    app = create_app(TestConfig)
    app.extensions["payment_gateway"] = FakeGateway()

    with app.app_context():
        yield app
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(roles=("PLAYER",), birthday=None, created_at=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            full_name=f"User {counter['n']}",
            birthday=birthday,
            created_at=created_at or utcnow(),
        )
        user.roles = [get_role(name) for name in roles]
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_session(app, make_user):
    def _make(starts_in=timedelta(days=3), courts=1, per_court=10, price=None, organizer=None, **extra):
        organizer = organizer or make_user(roles=("ORGANIZER",))
        total = courts * per_court
        s = Session(
            organizer_id=organizer.id,
            title="Thursday social",
            location="Court A",
            starts_at=utcnow() + starts_in,
            courts=courts,
            max_players_per_court=per_court,
            total_slots=total,
            available_slots=total,
            price=price,
            **extra,
        )
        db.session.add(s)
        db.session.commit()
        return s

    return _make


@pytest.fixture
def subscribe(app):
    counter = {"n": 0}

    def _subscribe(user, tickets=10):
        counter["n"] += 1
        now = utcnow()
        return grant_subscription_tickets(
            user.id,
            f"sub_test_{user.id}_{counter['n']}",
            f"cus_test_{user.id}",
            now,
            now + timedelta(days=90),
            tickets,
        )

    return _subscribe


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {issue_token(user.id)}"}

    return _headers
