import csv
import io
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.requests import Request

from inventory.core.config import get_settings
from inventory.core.request_context import resolve_origin
from inventory.core.security import create_access_token, hash_password
from inventory.db import models  # noqa: F401
from inventory.db.base import Base
from inventory.db.models.account_lockout import AccountLockout
from inventory.db.models.login_attempt import LoginAttempt
from inventory.db.models.user import User
from inventory.db.session import get_db
from inventory.defense.dependencies import get_clock
from inventory.main import app

PASSWORD = "correct horse battery staple"
PASSWORD_HASH = hash_password(PASSWORD)


def _make_user(username: str, role: str = "viewer", is_active: bool = True) -> User:
    return User(username=username, hashed_password=PASSWORD_HASH, role=role, is_active=is_active)


def _auth_header(username: str, role: str = "viewer") -> dict[str, str]:
    token = create_access_token({"sub": username, "role": role})
    return {"Authorization": f"Bearer {token}"}


def _extract_error_payload(response):
    payload = response.json()
    assert payload["ok"] is False
    assert "error" in payload
    assert "request_id" in payload
    return payload


def _extract_success_data(response):
    payload = response.json()
    assert payload["ok"] is True
    assert "data" in payload
    assert "request_id" in payload
    return payload["data"]


def _get_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, autocommit=False, autoflush=False)


def _override_get_db(session_factory):
    def _get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _get_db


@pytest.fixture()
def api(settings, clock):
    engine, SessionLocal = _get_session_factory()
    app.dependency_overrides[get_db] = _override_get_db(SessionLocal)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock

    with SessionLocal() as db:
        db.add_all(
            [
                _make_user("alice"),
                _make_user("manager", role="manager"),
                _make_user("root", role="admin"),
            ]
        )
        db.commit()

    try:
        yield TestClient(app), SessionLocal
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _login(client: TestClient, username: str, password: str = PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


def test_login_success_returns_token_and_rate_limit_headers(api):
    client, _ = api

    response = _login(client, "Alice")

    assert response.status_code == 200
    data = _extract_success_data(response)
    assert data["token_type"] == "bearer"
    assert data["role"] == "viewer"
    assert response.headers["X-RateLimit-Account-Remaining"] == "5"
    assert response.headers["X-RateLimit-Origin-Remaining"] == "10"
    assert response.headers["X-RateLimit-Reset"].endswith("Z")

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert _extract_success_data(me) == {"username": "alice", "role": "viewer"}


def test_invalid_credentials_are_recorded(api):
    client, SessionLocal = api

    response = _login(client, "alice", "wrong")

    assert response.status_code == 401
    payload = _extract_error_payload(response)
    assert payload["error"]["code"] == "http_401"
    assert response.headers["X-RateLimit-Account-Remaining"] == "4"
    assert response.headers["X-RateLimit-Origin-Remaining"] == "9"
    with SessionLocal() as db:
        row = db.query(LoginAttempt).one()
        assert row.identifier == "alice"
        assert row.origin_address == "testclient"
        assert row.succeeded is False


def test_account_locks_after_repeated_failures(api, clock):
    client, SessionLocal = api

    statuses = [_login(client, "alice", "wrong").status_code for _ in range(4)]
    assert statuses == [401] * 4

    locked = _login(client, "alice", "wrong")
    assert locked.status_code == 423
    error = _extract_error_payload(locked)["error"]
    assert error["code"] == "account_locked"
    assert error["details"]["retry_after_seconds"] == 900
    assert locked.headers["Retry-After"] == "900"

    # The correct password does not get through while the lock holds.
    clock.advance(minutes=5)
    still_locked = _login(client, "alice")
    assert still_locked.status_code == 423
    assert _extract_error_payload(still_locked)["error"]["details"]["retry_after_seconds"] == 600

    clock.advance(minutes=11)
    assert _login(client, "alice").status_code == 200
    with SessionLocal() as db:
        assert db.query(AccountLockout).count() == 1


def test_origin_is_rate_limited_across_accounts(api):
    client, _ = api

    for i in range(10):
        assert _login(client, f"ghost{i}", "wrong").status_code == 401

    response = _login(client, "alice")

    assert response.status_code == 429
    error = _extract_error_payload(response)["error"]
    assert error["code"] == "origin_rate_limited"
    assert error["details"] == {"attempts": 10, "max_attempts": 10, "window_minutes": 15}
    assert response.headers["X-RateLimit-Origin-Remaining"] == "0"


def test_security_endpoints_forbidden_for_viewer(api):
    client, _ = api

    response = client.get("/admin/security/stats", headers=_auth_header("alice", role="viewer"))

    assert response.status_code == 403
    payload = _extract_error_payload(response)
    assert payload["error"]["code"] == "http_403"


def test_manager_can_read_but_not_unlock(api):
    client, _ = api
    headers = _auth_header("manager", role="manager")

    stats = client.get("/admin/security/stats", headers=headers)
    assert stats.status_code == 200
    assert _extract_success_data(stats)["active_lockouts"] == 0

    unlock = client.post("/admin/security/unlock", json={"username": "alice"}, headers=headers)
    assert unlock.status_code == 403


def test_admin_unlock_restores_access(api):
    client, _ = api
    headers = _auth_header("root", role="admin")
    for _ in range(5):
        _login(client, "alice", "wrong")

    status_before = client.get("/admin/security/lockouts/alice", headers=headers)
    assert _extract_success_data(status_before)["locked"] is True
    assert _extract_success_data(status_before)["locked_by"] == "AUTOMATIC"

    unlock = client.post("/admin/security/unlock", json={"username": "Alice"}, headers=headers)
    assert _extract_success_data(unlock) == {"username": "alice", "unlocked": True}
    again = client.post("/admin/security/unlock", json={"username": "alice"}, headers=headers)
    assert _extract_success_data(again)["unlocked"] is False

    assert _login(client, "alice").status_code == 200


def test_admin_lock_blocks_login(api):
    client, _ = api
    headers = _auth_header("root", role="admin")

    response = client.post(
        "/admin/security/lock",
        json={"username": "alice", "minutes": 30, "reason": "shared credentials"},
        headers=headers,
    )

    data = _extract_success_data(response)
    assert data["locked"] is True
    assert data["locked_by"] == "ADMIN:root"
    assert data["retry_after_seconds"] == 1800
    assert _login(client, "alice").status_code == 423


def test_report_and_exports(api):
    client, _ = api
    headers = _auth_header("root", role="admin")
    _login(client, "alice")
    _login(client, "alice", "wrong")
    _login(client, "bob", "wrong")

    report = _extract_success_data(client.get("/admin/security/report?hours=24", headers=headers))
    assert report["summary"]["total_attempts"] == 3
    assert report["summary"]["successful_logins"] == 1
    assert report["top_threats"]["failed_origins"] == [{"origin": "testclient", "failed_count": 2}]

    bad = client.get("/admin/security/report?hours=0", headers=headers)
    assert bad.status_code == 400

    export = client.get("/admin/security/report/export.csv?hours=24", headers=headers)
    assert export.status_code == 200
    assert "attachment" in export.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(export.text)))
    assert rows[0] == ["axis", "identifier", "failed_count"]
    assert ["origin", "testclient", "2"] in rows
    assert ["account", "alice", "1"] in rows

    xlsx = client.get("/admin/security/report/export.xlsx?hours=24", headers=headers)
    assert xlsx.status_code == 200
    assert xlsx.content[:2] == b"PK"


def test_attempt_counts_endpoint(api):
    client, _ = api
    _login(client, "alice", "wrong")

    response = client.get(
        "/admin/security/attempts",
        params={"username": "ALICE", "origin": "testclient"},
        headers=_auth_header("manager", role="manager"),
    )

    assert _extract_success_data(response) == {
        "account": {"attempts": 1, "max_attempts": 5},
        "origin": {"attempts": 1, "max_attempts": 10},
        "window_minutes": 15,
    }


def _request(headers: dict[str, str], client: tuple[str, int] | None = None) -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/auth/login",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": client,
        }
    )


def test_resolve_origin_precedence():
    assert resolve_origin(_request({"X-Forwarded-For": "203.0.113.9"}, client=("198.51.100.1", 4000))) == "198.51.100.1"
    assert resolve_origin(_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "X-Real-IP": "10.1.1.1"})) == "203.0.113.9"
    assert resolve_origin(_request({"X-Real-IP": "10.1.1.1"})) == "10.1.1.1"
    assert resolve_origin(_request({})) == "127.0.0.1"
