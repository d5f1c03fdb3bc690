import pytest
from fastapi.testclient import TestClient

import catalog
import identity
from auth import create_access_token
from config import Settings
from database import Database
from main import create_app
from models import ROLE_ADMIN
from notifications import Mailer


class RecordingMailer(Mailer):
    def __init__(self):
        self.sent = []

    def send(self, message, recipient):
        self.sent.append((recipient, message))


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret-key-with-enough-length-for-hs256",
        bcrypt_rounds=4,
        environment="test",
        client_url="http://shop.test",
        seed_sample_data=False,
    )


@pytest.fixture
def db(settings):
    database = Database(settings.database_url, settings.statement_timeout)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(settings, db, mailer):
    app = create_app(settings, db, mailer)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db, settings):
    def _make(email="shopper@example.com", password="secret123", role="user", full_name="Test Shopper"):
        return identity.create(db, full_name, email, password, role=role, bcrypt_rounds=settings.bcrypt_rounds)
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="boss@example.com", role=ROLE_ADMIN, full_name="Store Admin")


@pytest.fixture
def auth_headers(settings):
    def _headers(account):
        return {"Authorization": f"Bearer {create_access_token(account, settings)}"}
    return _headers


@pytest.fixture
def category(db):
    return catalog.create_category(db, {"name": "Fruits & Vegetables", "description": "Fresh produce"})


@pytest.fixture
def bananas(db, category):
    return catalog.create_product(
        db,
        {
            "name": "Organic Bananas",
            "price": 1.99,
            "original_price": 2.49,
            "category_id": category.id,
            "unit": "bunch",
            "stock": 50,
        },
    )


@pytest.fixture
def milk(db, category):
    return catalog.create_product(
        db,
        {
            "name": "Whole Milk",
            "description": "Fresh whole milk",
            "price": 3.49,
            "original_price": 3.99,
            "category_id": category.id,
            "unit": "gallon",
            "stock": 30,
        },
    )
