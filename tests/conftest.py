from datetime import date

import mongomock
import pytest
from fastapi.testclient import TestClient

from accounts import AccountService
from catalog import CatalogService
from database import ensure_indexes, get_db
from fines import FineService
from lending import LendingService
from payments import PaymentService
from schemas import BookPayload, CopyPayload, RegisterPayload, StaffPayload, StaffRole
from security import PasswordHasher


class FixedClock:
    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def db():
    database = mongomock.MongoClient()["library_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return FixedClock(date(2024, 1, 1))


@pytest.fixture
def hasher():
    return PasswordHasher()


@pytest.fixture
def accounts(db, hasher, clock):
    return AccountService(db, hasher, clock)


@pytest.fixture
def catalog(db):
    return CatalogService(db)


@pytest.fixture
def lending(db, clock):
    return LendingService(db, loan_period_days=14, clock=clock)


@pytest.fixture
def fines(db, clock):
    return FineService(db, default_daily_rate=5.0, clock=clock)


@pytest.fixture
def payments(db, clock):
    return PaymentService(db, clock=clock)


@pytest.fixture
def patron(accounts):
    return accounts.register_patron(RegisterPayload(
        name="Ada Reader", email="ada@example.com", password="secret123", phone_number="555-0100",
    ))


@pytest.fixture
def book(catalog):
    return catalog.create_book(BookPayload(title="Dune", author="Frank Herbert", isbn="9780441013593"))


@pytest.fixture
def copy(catalog, book):
    return catalog.create_copy(CopyPayload(book_id=book.id, barcode="BC-0001"))


@pytest.fixture
def client(db, accounts):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    accounts.create_staff(StaffPayload(
        name="Head Librarian", email="admin@example.com", password="adminpass", role=StaffRole.ADMIN,
    ))
    accounts.create_staff(StaffPayload(
        name="Desk Librarian", email="desk@example.com", password="deskpass",
    ))
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, email, password, kind="user"):
    resp = client.post(f"/api/auth/{kind}/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
