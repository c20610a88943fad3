"""
Tests for the HTTP API.

Validates:
- The six operations over HTTP
- Error kinds map to status codes
- Audit listing and verification
"""

from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient

from rbac_ledger.catalog.schema import AssignmentPolicy
from rbac_ledger.dashboard.app import create_app
from rbac_ledger.service import AuthorizationService


class TestApi:
    """Test the RBAC Ledger API."""

    def setup_method(self):
        service = AuthorizationService(
            "sqlite:///:memory:", assignment_policy=AssignmentPolicy.ADMIN_ONLY
        )
        self.client = TestClient(create_app(service))
        self.admin = str(uuid4())
        self.user = str(uuid4())

    def as_admin(self) -> dict[str, str]:
        return {"X-Caller-Id": self.admin}

    def _bootstrap(self):
        assert self.client.post("/api/initialize", headers=self.as_admin()).status_code == 201
        resp = self.client.post(
            "/api/roles",
            json={"name": "moderator", "permissions": ["read", "update"]},
            headers=self.as_admin(),
        )
        assert resp.status_code == 201
        resp = self.client.post(
            "/api/assignments",
            json={"user": self.user, "role": "moderator"},
            headers=self.as_admin(),
        )
        assert resp.status_code == 201

    def test_health(self):
        assert self.client.get("/health").json() == {"status": "ok"}

    def test_initialize_and_state(self):
        resp = self.client.post("/api/initialize", headers=self.as_admin())
        assert resp.status_code == 201
        assert resp.json()["admin"] == self.admin

        state = self.client.get("/api/state").json()
        assert state["role_count"] == 0
        assert state["user_count"] == 0

        resp = self.client.post("/api/initialize", headers=self.as_admin())
        assert resp.status_code == 409
        assert resp.json()["error"] == "KeyConflict"

    def test_state_before_initialize(self):
        resp = self.client.get("/api/state")
        assert resp.status_code == 404
        assert resp.json()["error"] == "KeyNotFound"

    def test_missing_caller_header(self):
        assert self.client.post("/api/initialize").status_code == 422

    def test_roles(self):
        self._bootstrap()
        role = self.client.get("/api/roles/moderator").json()
        assert role["name"] == "moderator"
        assert role["permissions"] == ["read", "update"]
        assert [r["name"] for r in self.client.get("/api/roles").json()] == ["moderator"]

        resp = self.client.get("/api/roles/ghost")
        assert resp.status_code == 404
        assert resp.json()["error"] == "RoleNotFound"

    def test_role_errors(self):
        self.client.post("/api/initialize", headers=self.as_admin())
        resp = self.client.post(
            "/api/roles", json={"name": "x" * 33, "permissions": []}, headers=self.as_admin()
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "RoleNameTooLong"

        resp = self.client.post(
            "/api/roles",
            json={"name": "viewer", "permissions": ["read"]},
            headers={"X-Caller-Id": self.user},
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "NotAuthorized"

    def test_check_and_execute(self):
        self._bootstrap()
        resp = self.client.post(
            "/api/permissions/check", json={"user": self.user, "permission": "update"}
        )
        assert resp.status_code == 200
        assert resp.json()["result"] is True

        resp = self.client.post(
            "/api/permissions/check", json={"user": self.user, "permission": "delete"}
        )
        assert resp.json()["result"] is False

        resp = self.client.post(
            "/api/actions/execute",
            json={"action": "update_resource"},
            headers={"X-Caller-Id": self.user},
        )
        assert resp.status_code == 200
        assert resp.json()["permission"] == "update"

        resp = self.client.post(
            "/api/actions/execute",
            json={"action": "delete_resource"},
            headers={"X-Caller-Id": self.user},
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "PermissionDenied"

    def test_assignment_lifecycle(self):
        self._bootstrap()
        assert self.client.get(f"/api/assignments/{self.user}").json()["role"] == "moderator"

        resp = self.client.post(
            "/api/assignments",
            json={"user": self.user, "role": "moderator"},
            headers=self.as_admin(),
        )
        assert resp.status_code == 409

        resp = self.client.delete(f"/api/assignments/{self.user}", headers=self.as_admin())
        assert resp.status_code == 200
        assert resp.json()["role"] == "moderator"

        resp = self.client.post(
            "/api/permissions/check", json={"user": self.user, "permission": "read"}
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "KeyNotFound"

    def test_audit_endpoints(self):
        self._bootstrap()
        records = self.client.get("/api/audit").json()
        assert [r["sequence_number"] for r in records] == [3, 2, 1]

        created = self.client.get("/api/audit", params={"event_type": "role_created"}).json()
        assert len(created) == 1
        assert created[0]["content"]["name"] == "moderator"

        verification = self.client.get("/api/audit/verify").json()
        assert verification == {
            "valid": True,
            "records_verified": 3,
            "message": "Chain verified: 3 records, integrity intact",
        }
