"""
Login throttling tests.

Verifies:
- Failed logins are written to the activity log as LOGIN_FAILED
- A username locks after the configured number of failures (429)
- A successful login starts the count over
- The lockout runs out after the configured duration
- One address failing across many usernames is locked out too
"""

from datetime import timedelta

import pytest

from invoicing.models import ActivityLog
from invoicing.services import login_throttle_service


@pytest.fixture
def tight_limits(app, monkeypatch):
    monkeypatch.setitem(app.config, "LOGIN_MAX_FAILED_ATTEMPTS", 3)
    monkeypatch.setitem(app.config, "LOGIN_MAX_FAILED_PER_IP", 100)
    monkeypatch.setitem(app.config, "LOGIN_LOCKOUT_WINDOW_MINUTES", 15)
    monkeypatch.setitem(app.config, "LOGIN_LOCKOUT_DURATION_MINUTES", 15)


def _login(client, username, password="Password123"):
    return client.post("/api/auth/login", json={"username": username, "password": password})


class TestFailedAttempts:

    def test_failure_is_logged(self, client, db_session, regular_user):
        _login(client, "regular", "wrong-password")

        entry = db_session.query(ActivityLog).filter_by(action="LOGIN_FAILED").one()
        assert entry.user_id == regular_user.id
        assert entry.entity_id == "regular"
        assert entry.details["reason"] == "Invalid credentials"
        assert entry.ip_address == "127.0.0.1"

    def test_unknown_username_logged_without_user(self, client, db_session):
        _login(client, "ghost")

        entry = db_session.query(ActivityLog).filter_by(action="LOGIN_FAILED").one()
        assert entry.user_id is None
        assert entry.details["identifier"] == "ghost"

    def test_warning_near_lockout(self, client, db_session, regular_user, tight_limits):
        resp = _login(client, "regular", "wrong-password")

        assert resp.status_code == 401
        assert resp.get_json()["warning"] == "2 attempts remaining before account lockout"


class TestLockout:

    def test_locks_after_max_failures(self, client, db_session, regular_user, tight_limits):
        for _ in range(2):
            assert _login(client, "regular", "wrong-password").status_code == 401

        third = _login(client, "regular", "wrong-password")
        assert third.status_code == 429
        assert third.get_json()["locked"] is True

        # Even the right password is refused while locked
        resp = _login(client, "regular")
        assert resp.status_code == 429
        assert 0 < resp.get_json()["retry_after_seconds"] <= 15 * 60

    def test_success_resets_count(self, client, db_session, regular_user, tight_limits):
        for _ in range(2):
            _login(client, "regular", "wrong-password")
        assert _login(client, "regular").status_code == 200

        for _ in range(2):
            assert _login(client, "regular", "wrong-password").status_code == 401

        assert login_throttle_service.is_locked("regular") == (False, None)

    def test_lockout_expires(self, client, db_session, regular_user, tight_limits):
        for _ in range(3):
            _login(client, "regular", "wrong-password")
        assert _login(client, "regular").status_code == 429

        for entry in db_session.query(ActivityLog).filter_by(action="LOGIN_FAILED"):
            entry.created_at = entry.created_at - timedelta(minutes=20)
        db_session.commit()

        assert _login(client, "regular").status_code == 200

    def test_address_lockout_spans_usernames(self, client, db_session, regular_user, tight_limits, app, monkeypatch):
        monkeypatch.setitem(app.config, "LOGIN_MAX_FAILED_PER_IP", 3)
        for name in ("ghost1", "ghost2", "ghost3"):
            _login(client, name)

        resp = _login(client, "regular")

        assert resp.status_code == 429

    def test_lockout_status_endpoint(self, client, db_session, regular_user, tight_limits):
        _login(client, "regular", "wrong-password")

        body = client.get("/api/auth/lockout-status/regular").get_json()

        assert body["locked"] is False
        assert body["failed_attempts"] == 1
        assert body["max_attempts"] == 3
