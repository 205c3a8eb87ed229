"""
api/tests/conftest.py

Shared fixtures: one in-memory SQLite database per test, a TestClient wired
to it, and helpers to log in as a given user.
"""

from __future__ import annotations

import os

# must be set before oddsraiders.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ.setdefault("FOOTBALL_API_KEY", "test-key")

import pytest
from fastapi.testclient import TestClient

from oddsraiders.auth_firebase import get_current_user
from oddsraiders.db import Base, SessionLocal, engine, get_db
from oddsraiders.main import app
from oddsraiders.models import User
from oddsraiders.routers.billing import get_verifier
from oddsraiders.services.payfast import NotificationVerifier


class AcceptAll(NotificationVerifier):
    def verify(self, form, remote_addr):
        return None


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db):
    def _make(uid: str = "fb-u1", email: str = "u1@example.com", is_admin: bool = False) -> User:
        user = User(firebase_uid=uid, email=email, display_name=uid, is_admin=is_admin)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_verifier] = lambda: AcceptAll()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login():
    """login(user) makes every following request authenticate as that user."""
    def _login(user: User):
        claims = {"uid": user.firebase_uid, "db_user_id": user.id, "is_admin": bool(user.is_admin)}
        app.dependency_overrides[get_current_user] = lambda: dict(claims)
    return _login
