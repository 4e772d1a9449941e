"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Users without a feature flag are denied (403) and the denial is logged
- Admin-only endpoints reject regular users, even with the editUser flag
- Admins pass every flag check
"""

import pytest

from invoicing.errors import ForbiddenError
from invoicing.models import ActivityLog, User
from invoicing.services import auth_service

from conftest import auth_headers, get_token


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/clients"),
            ("POST", "/api/clients"),
            ("GET", "/api/products"),
            ("GET", "/api/product-groups"),
            ("POST", "/api/product-groups/update-stock"),
            ("GET", "/api/invoices"),
            ("PATCH", "/api/invoices/1/status"),
            ("GET", "/api/deliveries"),
            ("GET", "/api/logs"),
            ("DELETE", "/api/logs/cleanup"),
            ("GET", "/api/admin/users"),
            ("GET", "/api/auth/profile"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/clients", headers={"Authorization": "Bearer not-a-real-token"})
        assert resp.status_code == 401


# =============================================================================
# MISSING FEATURE FLAG (403)
# =============================================================================


class TestFeatureFlags:
    """Each area is guarded by its own flag."""

    @pytest.mark.parametrize(
        "path,permission",
        [
            ("/api/clients", "clients"),
            ("/api/products", "products"),
            ("/api/product-groups", "warehouse"),
            ("/api/invoices", "invoices"),
            ("/api/deliveries", "deliveries"),
        ],
    )
    def test_denied_without_flag(self, client, restricted_headers, path, permission):
        resp = client.get(path, headers=restricted_headers)

        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == permission

    def test_denial_is_logged(self, client, db_session, restricted_user, restricted_headers):
        client.get("/api/product-groups", headers=restricted_headers)

        entry = db_session.query(ActivityLog).filter_by(action="PERMISSION_DENIED").one()
        assert entry.user_id == restricted_user.id
        assert entry.details["required_permission"] == "warehouse"
        assert entry.details["resource"] == "/api/product-groups"

    def test_regular_user_allowed_with_flag(self, client, user_headers):
        resp = client.get("/api/product-groups", headers=user_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"product_groups": []}

    def test_client_statistics_needs_statistics_flag(self, client, db_session, regular_user, sample_client, admin_headers):
        client.put(
            f"/api/admin/users/{regular_user.id}/permissions",
            json={"permissions": {"statistics": False}},
            headers=admin_headers,
        )
        headers = auth_headers(get_token(regular_user))

        assert client.get(f"/api/clients/{sample_client.id}", headers=headers).status_code == 200
        resp = client.get(f"/api/clients/{sample_client.id}/statistics", headers=headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "statistics"


# =============================================================================
# ADMIN-ONLY ENDPOINTS
# =============================================================================


class TestAdminOnly:

    def test_regular_user_cannot_list_users(self, client, user_headers):
        resp = client.get("/api/admin/users", headers=user_headers)
        assert resp.status_code == 403

    def test_regular_user_cannot_view_log_stats(self, client, user_headers):
        resp = client.get("/api/logs/stats", headers=user_headers)
        assert resp.status_code == 403

    def test_admin_passes_every_flag(self, client, admin_headers):
        for path in ("/api/clients", "/api/products", "/api/product-groups", "/api/invoices", "/api/deliveries"):
            assert client.get(path, headers=admin_headers).status_code == 200, path

    def test_admin_lists_users(self, client, admin_headers, regular_user):
        resp = client.get("/api/admin/users", headers=admin_headers)

        assert resp.status_code == 200
        assert {u["username"] for u in resp.get_json()["users"]} == {"admin", "regular"}

    def test_cannot_delete_self(self, client, admin_user, admin_headers):
        resp = client.delete(f"/api/admin/users/{admin_user.id}", headers=admin_headers)
        assert resp.status_code == 409

    def test_deactivation_revokes_sessions(self, client, regular_user, user_headers, admin_headers):
        resp = client.put(
            f"/api/admin/users/{regular_user.id}/status",
            json={"is_active": False},
            headers=admin_headers,
        )
        assert resp.status_code == 200

        assert client.get("/api/auth/profile", headers=user_headers).status_code == 401


class TestUserManagementNeedsAdminRole:
    """The editUser flag alone never unlocks account administration."""

    @pytest.mark.parametrize(
        "method,path_template,body",
        [
            ("GET", "/api/admin/users", None),
            ("POST", "/api/admin/users", {"username": "sneaky", "password": "secret1", "role": "admin"}),
            ("PUT", "/api/admin/users/{admin_id}/permissions", {"permissions": {"editUser": False}}),
            ("PUT", "/api/admin/users/{admin_id}/status", {"is_active": False}),
            ("DELETE", "/api/admin/users/{admin_id}", None),
        ],
    )
    def test_flag_holder_is_rejected(self, client, db_session, admin_user, user_manager, method, path_template, body):
        headers = auth_headers(get_token(user_manager))
        path = path_template.format(admin_id=admin_user.id)

        resp = client.open(path, method=method, json=body, headers=headers)

        assert resp.status_code == 403
        db_session.expire_all()
        admin = db_session.get(User, admin_user.id)
        assert admin.is_active is True
        assert admin.perm_edit_user is True
        assert db_session.query(User).filter_by(username="sneaky").first() is None

    def test_service_rejects_admin_creation_by_non_admin(self, db_session, user_manager):
        with pytest.raises(ForbiddenError):
            auth_service.create_user(
                {"username": "sneaky", "password": "secret1", "role": "admin"}, actor_id=user_manager.id
            )
        assert db_session.query(User).filter_by(username="sneaky").first() is None

    def test_service_rejects_changes_by_non_admin(self, db_session, admin_user, user_manager):
        with pytest.raises(ForbiddenError):
            auth_service.set_active(admin_user.id, False, actor=user_manager)
        with pytest.raises(ForbiddenError):
            auth_service.update_permissions(admin_user.id, {"editUser": False}, actor=user_manager)

        db_session.expire_all()
        assert db_session.get(User, admin_user.id).is_active is True

    def test_admin_can_create_admin(self, client, db_session, admin_headers):
        resp = client.post(
            "/api/admin/users",
            json={"username": "second_admin", "password": "secret1", "role": "admin"},
            headers=admin_headers,
        )

        assert resp.status_code == 201
        assert resp.get_json()["user"]["role"] == "admin"


# =============================================================================
# ROUTING ERRORS
# =============================================================================


class TestJsonErrors:

    def test_unknown_route(self, client):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Route not found"}

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "OK"
