import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import PRODUCTS, USERS, ensure_indexes, get_db
from main import app
from notifications import get_mailer
from security import create_access_token, hash_password

PASSWORD = "ValidPassword123!"


class RecordingMailer:
    """Stands in for the SMTP mailer and keeps every message it is asked to send."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, message):
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.sent.append(message)

    def subjects(self):
        return [m.subject for m in self.sent]


@pytest.fixture(scope="function")
def settings(tmp_path):
    return Settings(
        JWT_SECRET="test-secret",
        UPLOAD_ROOT=str(tmp_path / "uploads"),
        PUBLIC_BASE_URL="http://testserver",
        EMAIL_ENABLED=False,
    )


@pytest.fixture(scope="function")
def db():
    """A fresh in-memory database per test, with the production indexes."""
    database = mongomock.MongoClient().db
    ensure_indexes(database)
    return database


@pytest.fixture(scope="function")
def mailer():
    return RecordingMailer()


@pytest.fixture(scope="function")
def client(db, settings, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_mailer] = lambda: mailer

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make_user(email="test@example.com", role="user", name="Test User", verified=True):
        user = {
            "name": name,
            "email": email,
            "password": hash_password(PASSWORD),
            "role": role,
            "address": {"street": "1 Main St", "city": "Springfield", "state": "IL", "zipcode": "62701"},
            "is_verified": verified,
            "verification_token": None,
        }
        user["_id"] = db[USERS].insert_one(user).inserted_id
        return user
    return _make_user


@pytest.fixture
def test_user(make_user):
    return make_user()


@pytest.fixture
def admin_user(make_user):
    return make_user(email="admin@example.com", role="admin", name="Admin")


def bearer(user, settings):
    return {"Authorization": f"Bearer {create_access_token(user['email'], user['role'], settings)}"}


@pytest.fixture
def auth_headers(test_user, settings):
    return bearer(test_user, settings)


@pytest.fixture
def admin_headers(admin_user, settings):
    return bearer(admin_user, settings)


@pytest.fixture
def make_product(db):
    def _make_product(name="Widget", price=9.99, stock=10):
        return db[PRODUCTS].insert_one({"name": name, "description": None, "price": price, "stock": stock}).inserted_id
    return _make_product


@pytest.fixture
def headers_for(settings):
    return lambda user: bearer(user, settings)
