"""
Tests for the authorization schema.

Validates:
- The action → permission table is total and one-to-one
- Role and assignment records are immutable
- Audit record hashing
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from rbac_ledger.catalog.schema import (
    ACTION_PERMISSIONS,
    GENESIS_HASH,
    Action,
    AuditEventType,
    AuditRecord,
    Permission,
    Role,
    RoleCreated,
    UserRoleAssignment,
    as_utc,
    required_permission,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestPermissionCatalog:
    """Test the fixed permission catalog."""

    def test_every_action_is_mapped(self):
        assert set(ACTION_PERMISSIONS) == set(Action)

    def test_mapping_is_one_to_one(self):
        assert set(ACTION_PERMISSIONS.values()) == set(Permission)

    @pytest.mark.parametrize(
        "action,permission",
        [
            (Action.CREATE_RESOURCE, Permission.CREATE),
            (Action.READ_RESOURCE, Permission.READ),
            (Action.UPDATE_RESOURCE, Permission.UPDATE),
            (Action.DELETE_RESOURCE, Permission.DELETE),
            (Action.ADMIN_OPERATION, Permission.ADMIN),
        ],
    )
    def test_required_permission(self, action, permission):
        assert required_permission(action) is permission

    def test_required_permission_accepts_values(self):
        assert required_permission("delete_resource") is Permission.DELETE

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            required_permission("launch_rocket")


class TestRecords:
    """Test role and assignment records."""

    def test_role_grants_by_membership(self):
        role = Role(
            name="editor",
            permissions=(Permission.READ, Permission.UPDATE, Permission.READ),
            created_at=NOW,
        )
        assert role.grants(Permission.READ)
        assert role.grants("update")
        assert not role.grants(Permission.DELETE)

    def test_role_is_immutable(self):
        role = Role(name="editor", permissions=(Permission.READ,), created_at=NOW)
        with pytest.raises(ValidationError):
            role.name = "admin"
        with pytest.raises(ValidationError):
            role.permissions = (Permission.ADMIN,)

    def test_assignment_is_immutable(self):
        assignment = UserRoleAssignment(
            user=uuid4(), role="editor", assigned_at=NOW, assigned_by=uuid4()
        )
        with pytest.raises(ValidationError):
            assignment.role = "admin"

    def test_as_utc_attaches_timezone(self):
        naive = datetime(2026, 1, 1, 12, 0)
        assert as_utc(naive) == NOW


class TestAuditRecordHash:
    """Test audit record hash computation."""

    def _record(self, **overrides) -> AuditRecord:
        fields = {
            "sequence_number": 1,
            "event_type": AuditEventType.ROLE_CREATED,
            "timestamp": NOW,
            "caller": uuid4(),
            "content": {"name": "editor", "permissions": ["read"]},
            "previous_hash": GENESIS_HASH,
        }
        fields.update(overrides)
        return AuditRecord(**fields)

    def test_hash_deterministic(self):
        record = self._record()
        assert record.compute_hash() == record.compute_hash()

    def test_hash_format(self):
        h = self._record().compute_hash()
        assert len(h) == 64
        assert all(c in "0123456789abcdef" for c in h)

    def test_hash_changes_with_content(self):
        caller = uuid4()
        a = self._record(caller=caller)
        b = self._record(caller=caller, content={"name": "editor", "permissions": ["admin"]})
        assert a.compute_hash() != b.compute_hash()

    def test_hash_ignores_timezone_representation(self):
        caller = uuid4()
        aware = self._record(caller=caller)
        naive = self._record(caller=caller, timestamp=NOW.replace(tzinfo=None))
        assert aware.compute_hash() == naive.compute_hash()

    def test_event_content_is_json_safe(self):
        event = RoleCreated(
            timestamp=NOW, name="editor", permissions=(Permission.READ, Permission.UPDATE)
        )
        assert event.event_type is AuditEventType.ROLE_CREATED
        assert event.content() == {"name": "editor", "permissions": ["read", "update"]}
