import threading

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import Caller, create_access_token
from config import Settings, get_settings
from database import create_document, ensure_indexes, get_db
from notifier import Mailer, Notifier

PROTECTED_EMAIL = "root@reptiles.shop"


class RecordingMailer(Mailer):
    def __init__(self, settings, fail=False):
        super().__init__(settings)
        self.sent = []
        self.fail = fail

    def send(self, to_address, to_name, subject, html_body, attachments=None):
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append({"to": to_address, "name": to_name, "subject": subject, "html": html_body})


class AtomicCollection:
    """Serializes calls so each one behaves like a single MongoDB operation."""

    def __init__(self, collection, lock):
        self._collection = collection
        self._lock = lock

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)
        return call


class AtomicDatabase:
    def __init__(self, database):
        self._database = database
        self._lock = threading.RLock()

    def __getitem__(self, name):
        return AtomicCollection(self._database[name], self._lock)


@pytest.fixture
def settings():
    return Settings(secret_key="test-secret", protected_account_emails=[PROTECTED_EMAIL])


@pytest.fixture
def db():
    database = mongomock.MongoClient().db
    ensure_indexes(database)
    return database


@pytest.fixture
def mailer(settings):
    return RecordingMailer(settings)


@pytest.fixture
def notifier(mailer):
    return Notifier(mailer)


@pytest.fixture
def make_user(db):
    def _make(name="Alice", email=None, is_admin=False, password_hash="not-a-real-hash"):
        email = email or f"{name.lower()}@example.com"
        user_id = create_document(db, "user", {
            "name": name,
            "email": email,
            "password_hash": password_hash,
            "avatar_url": None,
            "reset_token": None,
            "is_admin": is_admin,
        })
        return Caller(user_id=user_id, is_admin=is_admin, name=name, email=email)
    return _make


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        doc = {
            "name": "Leopard Gecko",
            "slug": "leopard-gecko",
            "price": 50.0,
            "count_in_stock": 5,
            "sold": 0,
            "category": "Geckos",
            "country": "Pakistan",
            "description": "Docile and easy to keep.",
            "images": ["https://img.example.com/gecko.jpg"],
            "reviews": [],
            "num_reviews": 0,
            "rating": 0.0,
        }
        doc.update(overrides)
        return create_document(db, "product", doc)
    return _make


@pytest.fixture
def client(db, settings, notifier):
    from main import app, get_notifier

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_header(settings):
    def _header(caller: Caller):
        token = create_access_token({"sub": caller.user_id}, settings)
        return {"Authorization": f"Bearer {token}"}
    return _header
