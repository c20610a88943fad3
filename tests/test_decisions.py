"""
Tests for the Access Decision Engine.

Validates:
- Membership decisions
- Action → permission authorization
- Role resolution guards (missing role, mismatched role)
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from rbac_ledger.catalog.schema import Action, Permission, Role, UserRoleAssignment
from rbac_ledger.governance.decisions import AccessDecisionEngine
from rbac_ledger.governance.errors import RoleNotFound, UserRoleMismatch

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestAccessDecisionEngine:
    """Test the pure decision logic."""

    def setup_method(self):
        self.engine = AccessDecisionEngine()
        self.user = uuid4()
        self.role = Role(
            name="moderator",
            permissions=(Permission.READ, Permission.UPDATE),
            created_at=NOW,
        )
        self.assignment = UserRoleAssignment(
            user=self.user, role="moderator", assigned_at=NOW, assigned_by=uuid4()
        )

    def test_granted_permission(self):
        decision = self.engine.check_permission(self.assignment, self.role, Permission.UPDATE)
        assert decision.granted
        assert decision.role == "moderator"
        assert decision.user == self.user
        assert decision.action is None

    def test_missing_permission(self):
        decision = self.engine.check_permission(self.assignment, self.role, Permission.DELETE)
        assert not decision.granted
        assert "does not grant" in decision.reason

    def test_missing_role_is_an_error(self):
        with pytest.raises(RoleNotFound):
            self.engine.check_permission(self.assignment, None, Permission.READ)

    def test_mismatched_role_is_an_error(self):
        other = Role(name="admin", permissions=tuple(Permission), created_at=NOW)
        with pytest.raises(UserRoleMismatch):
            self.engine.check_permission(self.assignment, other, Permission.READ)

    def test_authorize_action_records_action(self):
        decision = self.engine.authorize_action(
            self.assignment, self.role, Action.READ_RESOURCE
        )
        assert decision.granted
        assert decision.action is Action.READ_RESOURCE
        assert decision.permission is Permission.READ

    def test_authorize_action_denied(self):
        decision = self.engine.authorize_action(
            self.assignment, self.role, Action.DELETE_RESOURCE
        )
        assert not decision.granted
        assert decision.permission is Permission.DELETE

    def test_empty_role_grants_nothing(self):
        empty = Role(name="moderator", permissions=(), created_at=NOW)
        for permission in Permission:
            assert not self.engine.check_permission(self.assignment, empty, permission).granted
