"""
Tests for POST /auth/register and POST /auth/login.

Tests cover:
- Register then login with the same password
- Token claims
- Duplicate registration (409) leaves the first user untouched
- Unknown user and wrong password give identical 401s
- Missing, wrong-typed or unencodable fields (400)
- last_login_at bookkeeping, and login failing when that write fails
"""

import json
import os

import pytest
from jose import jwt
from sqlalchemy.exc import OperationalError

from conftest import ALICE, BOB, auth_headers, register
from messagely import storage
from messagely.errors import NotFoundError
from messagely.models import User


def decode(token: str) -> dict:
    return jwt.decode(token, os.environ["SECRET_KEY"], algorithms=["HS256"])


def login(client, username, password):
    return client.post("/auth/login", json={"username": username, "password": password})


class TestRegister:
    """Test user registration."""

    def test_register_returns_token(self, client):
        response = register(client, **ALICE)

        assert response.status_code == 200
        assert decode(response.json()["token"])["username"] == "alice"

    def test_register_stores_hash_not_plaintext(self, client, db):
        register(client, **ALICE)

        user = db.query(User).filter(User.username == "alice").one()
        assert user.password != "secret1"
        assert user.password.startswith("$2b$")

    def test_register_sets_join_and_login_timestamps(self, client, db):
        register(client, **ALICE)

        user = db.query(User).filter(User.username == "alice").one()
        assert user.join_at is not None
        assert user.last_login_at == user.join_at

    def test_duplicate_username_conflict(self, client, db):
        """Second registration with the same username returns 409."""
        register(client, **ALICE)
        original_hash = db.query(User.password).filter(User.username == "alice").scalar()

        response = register(client, **{**ALICE, "password": "other-password"})

        assert response.status_code == 409
        db.expire_all()
        assert db.query(User.password).filter(User.username == "alice").scalar() == original_hash
        # The original password still works
        assert login(client, "alice", "secret1").status_code == 200

    @pytest.mark.parametrize("field", ["username", "password", "first_name", "last_name", "phone"])
    def test_missing_field_rejected(self, client, field):
        body = {k: v for k, v in ALICE.items() if k != field}
        response = client.post("/auth/register", json=body)

        assert response.status_code == 400

    @pytest.mark.parametrize("field", ["username", "password", "first_name", "last_name", "phone"])
    def test_empty_field_rejected(self, client, field):
        response = register(client, **{**ALICE, field: ""})

        assert response.status_code == 400

    def test_overlong_password_rejected(self, client):
        response = register(client, **{**ALICE, "password": "p" * 100})

        assert response.status_code == 400


class TestLogin:
    """Test login."""

    def test_register_then_login(self, client):
        register(client, **ALICE)

        response = login(client, "alice", "secret1")

        assert response.status_code == 200
        assert decode(response.json()["token"])["username"] == "alice"

    def test_wrong_password_unauthorized(self, client):
        register(client, **ALICE)

        response = login(client, "alice", "wrong")

        assert response.status_code == 401

    def test_unknown_user_indistinguishable_from_wrong_password(self, client):
        register(client, **ALICE)

        unknown = login(client, "nobody", "secret1")
        wrong = login(client, "alice", "wrong")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_other_users_password_rejected(self, client):
        register(client, **ALICE)
        register(client, **BOB)

        assert login(client, "alice", BOB["password"]).status_code == 401

    @pytest.mark.parametrize("body", [
        {},
        {"username": "alice"},
        {"password": "secret1"},
        {"username": "", "password": "secret1"},
    ])
    def test_missing_credentials_bad_request(self, client, body):
        register(client, **ALICE)

        response = client.post("/auth/login", json=body)

        assert response.status_code == 400

    def test_login_updates_last_login(self, client, db):
        register(client, **ALICE)
        before = db.query(User.last_login_at).filter(User.username == "alice").scalar()

        login(client, "alice", "secret1")

        db.expire_all()
        after = db.query(User.last_login_at).filter(User.username == "alice").scalar()
        assert after > before

    def test_failed_login_leaves_last_login(self, client, db):
        register(client, **ALICE)
        before = db.query(User.last_login_at).filter(User.username == "alice").scalar()

        login(client, "alice", "wrong")

        db.expire_all()
        assert db.query(User.last_login_at).filter(User.username == "alice").scalar() == before

    def test_login_fails_when_last_login_update_fails(self, client, monkeypatch):
        """A failed last_login_at write fails the whole login; no token issued."""
        register(client, **ALICE)

        def broken_touch(db, username):
            raise OperationalError("UPDATE users", {}, Exception("database is locked"))

        monkeypatch.setattr(storage, "touch_last_login", broken_touch)

        response = login(client, "alice", "secret1")

        assert response.status_code == 500
        assert "token" not in response.json()
        assert "database is locked" not in response.text


def post_raw(client, path: str, body: dict):
    """POST a body json-encoded with ASCII escapes, so lone surrogates survive the trip."""
    return client.post(
        path,
        content=json.dumps(body).encode("ascii"),
        headers={"Content-Type": "application/json"},
    )


class TestMalformedInput:
    """Wrong-typed or unencodable auth input is a 400, never a 422 or 500."""

    @pytest.mark.parametrize("field,value", [
        ("username", 123),
        ("password", ["secret1"]),
        ("phone", {"number": "555"}),
    ])
    def test_register_wrong_type(self, client, field, value):
        response = register(client, **{**ALICE, field: value})

        assert response.status_code == 400
        assert field in response.json()["detail"]

    @pytest.mark.parametrize("body", [
        {"username": ["a"], "password": "x"},
        {"username": "alice", "password": 42},
    ])
    def test_login_wrong_type(self, client, body):
        response = client.post("/auth/login", json=body)

        assert response.status_code == 400

    def test_login_non_object_body(self, client):
        response = client.post("/auth/login", json=["alice", "secret1"])

        assert response.status_code == 400

    @pytest.mark.parametrize("field", ["username", "password", "first_name"])
    def test_register_lone_surrogate(self, client, db, field):
        response = post_raw(client, "/auth/register", {**ALICE, field: "\ud800"})

        assert response.status_code == 400
        assert db.query(User).count() == 0

    @pytest.mark.parametrize("field", ["username", "password"])
    def test_login_lone_surrogate(self, client, field):
        register(client, **ALICE)
        body = {"username": "alice", "password": "secret1", field: "\ud800"}

        response = post_raw(client, "/auth/login", body)

        assert response.status_code == 400

    def test_wrong_type_counted_as_bad_request(self, client):
        client.post("/auth/login", json={"username": 1, "password": 2})

        body = client.get("/metrics").text

        assert 'auth_requests_total{action="login",result="bad_request"}' in body

    def test_other_routes_keep_validation_status(self, client, alice_token):
        response = client.post(
            "/messages",
            json={"to_username": ["bob"], "body": "hi"},
            headers=auth_headers(alice_token),
        )

        assert response.status_code == 422


class TestAuthMetrics:
    """Auth outcomes are counted."""

    def test_outcomes_exposed(self, client):
        register(client, **ALICE)
        login(client, "alice", "wrong")

        body = client.get("/metrics").text

        assert 'auth_requests_total{action="register",result="success"}' in body
        assert 'auth_requests_total{action="login",result="unauthorized"}' in body

    def test_not_found_during_login_counted_as_error(self, client, monkeypatch):
        register(client, **ALICE)

        def vanished(db, username):
            raise NotFoundError(f"User {username} not found")

        monkeypatch.setattr(storage, "touch_last_login", vanished)
        login(client, "alice", "secret1")

        body = client.get("/metrics").text

        assert 'auth_requests_total{action="login",result="error"}' in body
        assert 'result="not_found"' not in body
