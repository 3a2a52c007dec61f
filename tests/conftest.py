import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from applications import ApplicationService
from database import USERS, Store
from errors import DependencyError
from loans import LoanService
from main import create_app
from schemas import LoanCreate, RegisterRequest
from stats import StatsService
from users import UserService

MANAGER = {"email": "m@x.com", "role": "manager"}
OTHER_MANAGER = {"email": "other@x.com", "role": "manager"}
ADMIN = {"email": "admin@x.com", "role": "admin"}
BORROWER = "b@x.com"
PASSWORD = "correct-horse"


class Clock:
    """Hands out the given timestamps in order, then keeps ticking by one second."""

    def __init__(self, *stamps):
        self.stamps = list(stamps)
        self.last = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        if self.stamps:
            self.last = self.stamps.pop(0)
        else:
            self.last = self.last + timedelta(seconds=1)
        return self.last


class FakeGateway:
    def __init__(self):
        self.intents = {}

    def create_intent(self, amount_minor_units, currency, metadata=None):
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "status": "requires_payment_method",
            "amount": amount_minor_units,
            "currency": currency,
            "metadata": dict(metadata or {}),
        }
        return {"id": intent_id, "clientSecret": f"{intent_id}_secret"}

    def succeed(self, intent_id):
        self.intents[intent_id]["status"] = "succeeded"

    def retrieve_intent(self, intent_id):
        if intent_id not in self.intents:
            raise DependencyError("No such payment intent")
        return dict(self.intents[intent_id])


@pytest.fixture
def store():
    s = Store(client=mongomock.MongoClient(), name="loanlink_test")
    yield s
    s.close()


@pytest.fixture
def users(store):
    return UserService(store)


@pytest.fixture
def loans(store):
    return LoanService(store)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def applications(store, clock):
    return ApplicationService(store, clock=clock)


@pytest.fixture
def stats(store):
    return StatsService(store)


def make_loan(loans, actor=MANAGER, **fields):
    payload = {"title": "Small Business Loan", "category": "business", "interestRate": 5, "maxLimit": 5000}
    payload.update(fields)
    return loans.create(LoanCreate(**payload), actor)["insertedId"]


@pytest.fixture
def loan_id(loans):
    return make_loan(loans)


def make_user(store, email, role="borrower", status="active"):
    UserService(store).register_if_absent(
        email, RegisterRequest(email=email, password=PASSWORD, name=email.split("@")[0])
    )
    store.update_one(USERS, {"email": email}, {"$set": {"role": role, "status": status}})
    return store.find_one(USERS, {"email": email})


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(store, gateway):
    with TestClient(create_app(store=store, gateway=gateway)) as c:
        yield c


def login(client, email, password=PASSWORD):
    resp = client.post("/jwt", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp
