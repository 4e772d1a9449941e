"""
Activity log tests.

Verifies:
- record() writes one entry with request metadata merged into details
- A failing audit write never breaks the surrounding business operation
- Non-admin viewers only see their own entries
- Pagination metadata and newest-first ordering
- Retention pruning removes exactly the old entries and logs the cleanup
"""

from datetime import timedelta

import pytest
from flask import request

from invoicing.errors import ValidationError
from invoicing.models import ActivityLog, Client
from invoicing.services import activity_service, client_service
from invoicing.services.activity_service import LogFilters, RequestContext
from invoicing.time_utils import utcnow

from conftest import auth_headers, get_token


def _old_entry(user_id, days_ago, action="OLD_ACTION"):
    return ActivityLog(
        user_id=user_id,
        action=action,
        entity_type="widgets",
        details={},
        created_at=utcnow() - timedelta(days=days_ago),
    )


class TestRecord:

    def test_record_with_context(self, db_session, regular_user):
        context = RequestContext(ip_address="10.0.0.5", user_agent="pytest", method="POST", url="/api/clients")

        entry = activity_service.record(
            regular_user.id, "CREATE_CLIENT", "clients", 7, {"name": "Acme"}, context, commit=True
        )

        assert entry is not None
        stored = db_session.get(ActivityLog, entry.id)
        assert stored.entity_id == "7"
        assert stored.ip_address == "10.0.0.5"
        assert stored.details["name"] == "Acme"
        assert stored.details["method"] == "POST"
        assert stored.details["url"] == "/api/clients"
        assert stored.details["timestamp"].endswith("Z")

    def test_system_entry(self, db_session):
        entry = activity_service.record_system("CLEANUP_OLD_LOGS", "activity_logs", commit=True)

        assert entry.user_id is None
        assert entry.details["system"] is True

    def test_failure_is_swallowed(self, db_session, admin_user, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(activity_service, "_build_entry", broken)

        client = client_service.create_client(
            {
                "name": "Acme",
                "legal_name": "Acme LLC",
                "mb": "11111111",
                "pib": "222222222",
                "address": "Main Street 1",
            },
            actor_id=admin_user.id,
        )

        assert db_session.get(Client, client.id) is not None
        assert db_session.query(ActivityLog).count() == 0

    def test_request_context_from_forwarded_header(self, app):
        with app.test_request_context(
            "/api/clients?page=2",
            method="GET",
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "pytest"},
        ):
            context = RequestContext.from_request(request)

        assert context.ip_address == "203.0.113.9"
        assert context.method == "GET"
        assert context.url == "/api/clients?page=2"

    def test_request_context_skips_malformed_addresses(self, app):
        with app.test_request_context(
            "/api/clients",
            headers={"X-Forwarded-For": "x" * 200, "X-Real-IP": "198.51.100.7"},
            environ_base={"REMOTE_ADDR": "10.1.1.1"},
        ):
            from_real_ip = RequestContext.from_request(request)

        with app.test_request_context(
            "/api/clients",
            headers={"X-Forwarded-For": "not-an-ip, 10.0.0.1", "X-Real-IP": "also bad"},
            environ_base={"REMOTE_ADDR": "10.1.1.1"},
        ):
            from_socket = RequestContext.from_request(request)

        assert from_real_ip.ip_address == "198.51.100.7"
        assert from_socket.ip_address == "10.1.1.1"

    def test_oversized_forwarded_header_still_audited(self, client, db_session, admin_user):
        headers = auth_headers(get_token(admin_user))
        headers["X-Forwarded-For"] = "9" * 200

        resp = client.post(
            "/api/clients",
            json={
                "name": "Acme",
                "legal_name": "Acme LLC",
                "mb": "11111111",
                "pib": "222222222",
                "address": "Main Street 1",
            },
            headers=headers,
        )

        assert resp.status_code == 201
        entry = db_session.query(ActivityLog).filter_by(action="CREATE_CLIENT").one()
        assert entry.ip_address == "127.0.0.1"
        assert len(entry.ip_address) <= 45


class TestQuery:

    def test_non_admin_sees_only_own_entries(self, db_session, admin_user, regular_user):
        for _ in range(3):
            activity_service.record(admin_user.id, "ADMIN_THING", "widgets", commit=True)
        for _ in range(2):
            activity_service.record(regular_user.id, "USER_THING", "widgets", commit=True)

        # Asking for the admin's entries still yields only the caller's own
        result = activity_service.query_logs(regular_user, LogFilters(user_id=admin_user.id))

        assert result["pagination"]["total"] == 2
        assert {log["action"] for log in result["logs"]} == {"USER_THING"}

    def test_admin_sees_everything(self, db_session, admin_user, regular_user):
        activity_service.record(admin_user.id, "ADMIN_THING", "widgets", commit=True)
        activity_service.record(regular_user.id, "USER_THING", "widgets", commit=True)

        result = activity_service.query_logs(admin_user, LogFilters(entity_type="widgets"))

        assert result["pagination"]["total"] == 2
        assert result["logs"][0]["username"] in ("admin", "regular")

    def test_pagination(self, db_session, admin_user):
        for i in range(75):
            activity_service.record(admin_user.id, "BULK", "widgets", i)
        db_session.commit()

        result = activity_service.query_logs(admin_user, LogFilters(entity_type="widgets"), page=2, page_size=50)

        assert len(result["logs"]) == 25
        assert result["pagination"] == {
            "page": 2,
            "limit": 50,
            "total": 75,
            "totalPages": 2,
            "hasNext": False,
            "hasPrev": True,
        }

    def test_newest_first(self, db_session, admin_user):
        db_session.add(_old_entry(admin_user.id, 5, action="OLDER"))
        db_session.commit()
        activity_service.record(admin_user.id, "NEWER", "widgets", commit=True)

        result = activity_service.query_logs(admin_user, LogFilters(entity_type="widgets"))

        assert [log["action"] for log in result["logs"]] == ["NEWER", "OLDER"]

    def test_statistics(self, db_session, admin_user, regular_user):
        activity_service.record(admin_user.id, "A", "clients", commit=True)
        activity_service.record(admin_user.id, "B", "clients", commit=True)
        activity_service.record(regular_user.id, "C", "products", commit=True)

        stats = activity_service.statistics(LogFilters())

        assert stats["overview"]["total_actions"] == 3
        assert stats["overview"]["unique_users"] == 2
        assert stats["actions_by_type"][0] == {"entity_type": "clients", "count": 2}
        assert stats["actions_by_user"][0]["username"] == "admin"


class TestPrune:

    def test_prune_removes_only_old_entries(self, db_session, admin_user):
        for days in (91, 120, 400):
            db_session.add(_old_entry(admin_user.id, days))
        for days in (1, 89):
            db_session.add(_old_entry(admin_user.id, days, action="RECENT"))
        db_session.commit()

        deleted = activity_service.prune_older_than(90)

        assert deleted == 3
        remaining = {e.action for e in db_session.query(ActivityLog).all()}
        assert remaining == {"RECENT", "CLEANUP_OLD_LOGS"}

        cleanup = db_session.query(ActivityLog).filter_by(action="CLEANUP_OLD_LOGS").one()
        assert cleanup.user_id is None
        assert cleanup.details["deletedCount"] == 3
        assert cleanup.details["daysToKeep"] == 90

    @pytest.mark.parametrize("days", [0, 366, "30"])
    def test_prune_rejects_bad_retention(self, db_session, days):
        with pytest.raises(ValidationError):
            activity_service.prune_older_than(days)

    def test_cleanup_route_admin_only(self, client, db_session, admin_user, regular_user):
        db_session.add(_old_entry(admin_user.id, 200))
        db_session.commit()

        denied = client.delete("/api/logs/cleanup?days=90", headers=auth_headers(get_token(regular_user)))
        assert denied.status_code == 403

        resp = client.delete("/api/logs/cleanup?days=90", headers=auth_headers(get_token(admin_user)))
        assert resp.status_code == 200
        assert resp.get_json()["deleted_count"] == 1
        assert resp.get_json()["days_kept"] == 90
