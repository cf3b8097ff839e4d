"""
tests/integration/test_admin.py — Integration tests for SUPER_ADMIN endpoints.

Endpoints covered:
  GET    /admin/dashboard
  GET    /admin/users[?include_inactive=true]
  GET    /admin/users/<id>
  GET    /admin/users/<id>/notes
  PUT    /admin/users/<id>
  PATCH  /admin/<id>/role
  PATCH  /admin/<id>/deactivate
  PATCH  /admin/<id>/restore
  DELETE /admin/<id>/permanent
"""

from __future__ import annotations

from sqlalchemy import func, select

from backend.app.constants import AuditAction, HARD_DELETE_CONFIRMATION
from backend.app.extensions import db
from backend.app.models.audit_log import AuditLog
from backend.app.models.refresh_token import RefreshToken
from backend.app.models.user import User
from backend.app.repositories import user_repository
from backend.tests.integration.helpers import (
    PASSWORD,
    auth_headers,
    create_verified_user,
    login,
    register,
)


def _ids(resp) -> set[int]:
    return {u["id"] for u in resp.get_json()["data"]["users"]}


# ═══════════════════════════════════════════════════════════════════════════
# Access control
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminAccess:

    def test_anonymous_request_is_401(self, client):
        resp = client.get("/api/v1/admin/dashboard")
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"

    def test_customer_is_403(self, client):
        alice = create_verified_user(client, "alice")
        for method, url in (
            ("get", "/api/v1/admin/dashboard"),
            ("get", "/api/v1/admin/users"),
            ("patch", f"/api/v1/admin/{alice['user']['id']}/role"),
            ("delete", f"/api/v1/admin/{alice['user']['id']}/permanent"),
        ):
            resp = getattr(client, method)(url, headers=auth_headers(alice["access_token"]))
            assert resp.status_code == 403, url
            assert resp.get_json()["error"]["code"] == "FORBIDDEN"


# ═══════════════════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════════════════

class TestDashboardAndListing:

    def test_dashboard_counts(self, client, admin):
        create_verified_user(client, "alice")
        register(client, "bob")   # unverified
        resp = client.get("/api/v1/admin/dashboard", headers=auth_headers(admin["access_token"]))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["stats"] == {
            "total_users": 3,
            "admins": 1,
            "customers": 2,
            "verified_users": 2,
            "unverified_users": 1,
            "inactive_users": 0,
        }

    def test_list_users_never_exposes_secrets(self, client, admin):
        create_verified_user(client, "alice")
        resp = client.get("/api/v1/admin/users", headers=auth_headers(admin["access_token"]))
        data = resp.get_json()["data"]
        assert data["count"] == 2
        for user in data["users"]:
            assert "password_hash" not in user
            assert "admin_notes" not in user

    def test_get_user(self, client, admin):
        alice = create_verified_user(client, "alice")
        resp = client.get(
            f"/api/v1/admin/users/{alice['user']['id']}",
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["email"] == "alice@test.com"

    def test_get_unknown_user_is_404(self, client, admin):
        resp = client.get("/api/v1/admin/users/424242", headers=auth_headers(admin["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Role changes
# ═══════════════════════════════════════════════════════════════════════════

class TestChangeRole:

    def test_change_role_is_applied_and_audited(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        resp = client.patch(
            f"/api/v1/admin/{alice['user']['id']}/role",
            json={"role": "ORDER_MANAGER"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["role"] == "ORDER_MANAGER"

        with app.app_context():
            entry = db.session.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.USER_ROLE_CHANGE)
            ).scalar_one()
            assert entry.performed_by == admin["id"]
            assert entry.target_resource == str(alice["user"]["id"])
            assert entry.metadata_["old_role"] == "CUSTOMER"
            assert entry.metadata_["new_role"] == "ORDER_MANAGER"

    def test_put_is_accepted_for_older_clients(self, client, admin):
        alice = create_verified_user(client, "alice")
        resp = client.put(
            f"/api/v1/admin/{alice['user']['id']}/role",
            json={"role": "GUEST"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200

    def test_admin_cannot_change_own_role(self, client, admin):
        resp = client.patch(
            f"/api/v1/admin/{admin['id']}/role",
            json={"role": "CUSTOMER"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "CANNOT_CHANGE_SELF"

    def test_invalid_role(self, client, admin):
        alice = create_verified_user(client, "alice")
        resp = client.patch(
            f"/api/v1/admin/{alice['user']['id']}/role",
            json={"role": "KING"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_ROLE"

    def test_unknown_user(self, client, admin):
        resp = client.patch(
            "/api/v1/admin/424242/role",
            json={"role": "GUEST"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Soft delete / restore
# ═══════════════════════════════════════════════════════════════════════════

class TestSoftDelete:

    def test_deactivate_hides_user_and_restore_reverses_it(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        uid = alice["user"]["id"]
        headers = auth_headers(admin["access_token"])

        resp = client.patch(f"/api/v1/admin/{uid}/deactivate", json={"reason": "chargeback"}, headers=headers)
        assert resp.status_code == 200

        assert uid not in _ids(client.get("/api/v1/admin/users", headers=headers))
        assert uid in _ids(client.get("/api/v1/admin/users?include_inactive=true", headers=headers))
        assert client.get(f"/api/v1/admin/users/{uid}", headers=headers).status_code == 404
        assert client.get(
            f"/api/v1/admin/users/{uid}?include_inactive=true", headers=headers,
        ).status_code == 200

        stats = client.get("/api/v1/admin/dashboard", headers=headers).get_json()["data"]["stats"]
        assert stats["inactive_users"] == 1

        with app.app_context():
            count = db.session.execute(
                select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == uid)
            ).scalar_one()
            assert count == 0

        resp = client.patch(f"/api/v1/admin/{uid}/restore", headers=headers)
        assert resp.status_code == 200
        assert uid in _ids(client.get("/api/v1/admin/users", headers=headers))

        with app.app_context():
            user = user_repository.find_by_id(uid, db.session)
            assert user.deactivated_at is None
            assert user.deactivation_reason is None

        login(client, "alice@test.com")

    def test_admin_cannot_deactivate_self(self, client, admin):
        resp = client.patch(
            f"/api/v1/admin/{admin['id']}/deactivate",
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "CANNOT_DELETE_SELF"

    def test_deactivating_inactive_user_is_404(self, client, admin):
        alice = create_verified_user(client, "alice")
        headers = auth_headers(admin["access_token"])
        client.patch(f"/api/v1/admin/{alice['user']['id']}/deactivate", headers=headers)
        resp = client.patch(f"/api/v1/admin/{alice['user']['id']}/deactivate", headers=headers)
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Hard delete
# ═══════════════════════════════════════════════════════════════════════════

class TestHardDelete:

    def test_confirmation_is_required(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        for body in ({}, {"confirmation": "yes"}):
            resp = client.delete(
                f"/api/v1/admin/{alice['user']['id']}/permanent",
                json=body,
                headers=auth_headers(admin["access_token"]),
            )
            assert resp.status_code == 400
            error = resp.get_json()["error"]
            assert error["code"] == "CONFIRMATION_REQUIRED"
            assert HARD_DELETE_CONFIRMATION in error["message"]

        with app.app_context():
            assert user_repository.find_by_id(alice["user"]["id"], db.session) is not None

    def test_admin_cannot_hard_delete_self(self, client, admin):
        resp = client.delete(
            f"/api/v1/admin/{admin['id']}/permanent",
            json={"confirmation": HARD_DELETE_CONFIRMATION},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "CANNOT_DELETE_SELF"

    def test_hard_delete_removes_user_and_scrubs_audit_trail(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        uid = alice["user"]["id"]

        resp = client.delete(
            f"/api/v1/admin/{uid}/permanent",
            json={"confirmation": HARD_DELETE_CONFIRMATION},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200

        with app.app_context():
            assert db.session.get(User, uid) is None
            tokens = db.session.execute(
                select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == uid)
            ).scalar_one()
            assert tokens == 0

            entries = db.session.execute(
                select(AuditLog).where(AuditLog.target_resource == str(uid)).order_by(AuditLog.id)
            ).scalars().all()
            created = entries[0]
            assert created.action is AuditAction.USER_CREATE
            assert "email" not in created.metadata_
            assert created.metadata_["anonymized"] is True
            assert created.ip is None
            deleted = entries[-1]
            assert deleted.action is AuditAction.USER_DELETE
            assert deleted.metadata_["hard_delete"] is True

        # the address is free again
        register(client, "alice")

    def test_inactive_user_can_be_hard_deleted(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        uid = alice["user"]["id"]
        headers = auth_headers(admin["access_token"])
        client.patch(f"/api/v1/admin/{uid}/deactivate", headers=headers)

        resp = client.delete(
            f"/api/v1/admin/{uid}/permanent",
            json={"confirmation": HARD_DELETE_CONFIRMATION, "anonymize": False},
            headers=headers,
        )
        assert resp.status_code == 200
        with app.app_context():
            assert db.session.get(User, uid) is None


# ═══════════════════════════════════════════════════════════════════════════
# Extended edit and admin notes
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminEditUser:

    def test_notes_are_appended_and_reads_are_audited(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        uid = alice["user"]["id"]
        headers = auth_headers(admin["access_token"])

        for note in ("first contact", "refund issued"):
            resp = client.put(f"/api/v1/admin/users/{uid}", json={"admin_notes": note}, headers=headers)
            assert resp.status_code == 200
            assert resp.get_json()["data"]["user"]["has_admin_notes"] is True

        resp = client.get(f"/api/v1/admin/users/{uid}/notes", headers=headers)
        assert resp.status_code == 200
        notes = resp.get_json()["data"]
        assert notes["has_notes"] is True
        lines = notes["admin_notes"].splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("Admin User: first contact")
        assert lines[1].endswith("Admin User: refund issued")

        with app.app_context():
            viewed = db.session.execute(
                select(func.count()).select_from(AuditLog).where(AuditLog.action == AuditAction.ADMIN_ACTION)
            ).scalar_one()
            assert viewed == 1

    def test_edit_fields_and_verification_flag(self, client, admin):
        bob = register(client, "bob")
        resp = client.put(
            f"/api/v1/admin/users/{bob['user']['id']}",
            json={"first_name": "Robert", "is_email_verified": True, "role": "GUEST"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200
        user = resp.get_json()["data"]["user"]
        assert user["first_name"] == "Robert"
        assert user["is_email_verified"] is True
        assert user["role"] == "GUEST"

        # verified by an admin, so the user can now sign in
        login(client, "bob@test.com", PASSWORD)

    def test_deactivate_through_edit_revokes_sessions(self, app, client, admin):
        alice = create_verified_user(client, "alice")
        uid = alice["user"]["id"]
        resp = client.put(
            f"/api/v1/admin/users/{uid}",
            json={"is_active": False, "notes": "requested by support"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["is_active"] is False

        with app.app_context():
            user = user_repository.find_by_id(uid, db.session, include_inactive=True)
            assert user.deactivation_reason == "requested by support"
            assert user.refresh_tokens == []

    def test_role_change_for_self_is_rejected(self, client, admin):
        resp = client.put(
            f"/api/v1/admin/users/{admin['id']}",
            json={"role": "CUSTOMER"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "CANNOT_CHANGE_SELF"

    def test_deactivating_self_is_rejected(self, app, client, admin):
        resp = client.put(
            f"/api/v1/admin/users/{admin['id']}",
            json={"is_active": False, "first_name": "Renamed"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "CANNOT_DELETE_SELF"

        with app.app_context():
            user = user_repository.find_by_id(admin["id"], db.session, include_inactive=True)
            assert user.is_active is True
            assert user.first_name == "Admin"
            assert user.refresh_tokens != []

        resp = client.get("/api/v1/admin/dashboard", headers=auth_headers(admin["access_token"]))
        assert resp.status_code == 200

    def test_reactivating_self_is_a_no_op(self, client, admin):
        resp = client.put(
            f"/api/v1/admin/users/{admin['id']}",
            json={"is_active": True},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["is_active"] is True

    def test_email_conflict(self, client, admin):
        create_verified_user(client, "bob")
        alice = create_verified_user(client, "alice")
        resp = client.put(
            f"/api/v1/admin/users/{alice['user']['id']}",
            json={"email": "bob@test.com"},
            headers=auth_headers(admin["access_token"]),
        )
        assert resp.status_code == 409
        assert resp.get_json()["error"]["code"] == "EMAIL_IN_USE"
