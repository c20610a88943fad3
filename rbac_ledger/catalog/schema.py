"""
Authorization Schema — Pydantic models for every RBAC Ledger entity.

These models are the canonical data structures of the authorization engine.
They govern the shape of roles, assignments, the authorization state and the
audit records appended after every operation.

The permission catalog is fixed: five permissions, five actions and a total
one-to-one table mapping each action to the permission it requires.
"""

from __future__ import annotations

import enum
import hashlib
import json
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


# ════════════════════════════════════════════════════════════════
# Permission Catalog
# ════════════════════════════════════════════════════════════════

MAX_ROLE_NAME_LENGTH = 32

GENESIS_HASH = "0" * 64  # The "previous hash" of the first audit record


class Permission(str, enum.Enum):
    """Atomic capabilities a role may grant."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADMIN = "admin"


class Action(str, enum.Enum):
    """Business-level operations a caller may attempt."""

    CREATE_RESOURCE = "create_resource"
    READ_RESOURCE = "read_resource"
    UPDATE_RESOURCE = "update_resource"
    DELETE_RESOURCE = "delete_resource"
    ADMIN_OPERATION = "admin_operation"


ACTION_PERMISSIONS: dict[Action, Permission] = {
    Action.CREATE_RESOURCE: Permission.CREATE,
    Action.READ_RESOURCE: Permission.READ,
    Action.UPDATE_RESOURCE: Permission.UPDATE,
    Action.DELETE_RESOURCE: Permission.DELETE,
    Action.ADMIN_OPERATION: Permission.ADMIN,
}

_unmapped = set(Action) - set(ACTION_PERMISSIONS)
if _unmapped:
    raise RuntimeError(
        f"Action table is not total, missing: {sorted(a.value for a in _unmapped)}"
    )


def required_permission(action: Action) -> Permission:
    """Return the permission an action requires."""
    return ACTION_PERMISSIONS[Action(action)]


class AssignmentPolicy(str, enum.Enum):
    """Who may assign and revoke roles."""

    ADMIN_ONLY = "admin_only"  # Only the designated administrator
    OPEN = "open"  # Any authenticated caller


class AuditEventType(str, enum.Enum):
    """Types of audit records, one per public operation."""

    RBAC_INITIALIZED = "rbac_initialized"
    ROLE_CREATED = "role_created"
    ROLE_ASSIGNED = "role_assigned"
    PERMISSION_CHECKED = "permission_checked"
    ROLE_REVOKED = "role_revoked"
    ACTION_EXECUTED = "action_executed"


def utc_now() -> datetime:
    """Default timestamp source."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps read back from storage."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ════════════════════════════════════════════════════════════════
# Stored Records
# ════════════════════════════════════════════════════════════════


class Role(BaseModel):
    """
    A named, immutable set of permissions.

    Roles are created once by the administrator and never edited or deleted.
    Duplicate permissions are kept as given; only membership is ever tested.
    """

    model_config = {"frozen": True}

    name: str = Field(description="Unique role name (at most 32 characters)")
    permissions: tuple[Permission, ...] = Field(
        default=(), description="Permissions granted, fixed at creation"
    )
    created_at: datetime

    def grants(self, permission: Permission) -> bool:
        return Permission(permission) in self.permissions


class UserRoleAssignment(BaseModel):
    """
    Binding of one role to one user identity.

    `role` is the role's name, not a reference: consistency with the actual
    Role record is re-checked on every decision.
    """

    model_config = {"frozen": True}

    user: UUID
    role: str
    assigned_at: datetime
    assigned_by: UUID


class AuthorizationState(BaseModel):
    """Singleton holding the administrator and the running counters."""

    model_config = {"frozen": True}

    admin: UUID
    role_count: int = 0
    user_count: int = 0
    initialized_at: datetime | None = None


# ════════════════════════════════════════════════════════════════
# Audit Events
# ════════════════════════════════════════════════════════════════


class AuditEvent(BaseModel):
    """Base class for the content of an audit record."""

    model_config = {"frozen": True}

    event_type: AuditEventType
    timestamp: datetime

    def content(self) -> dict[str, Any]:
        """JSON-safe payload stored in the audit trail."""
        return self.model_dump(mode="json", exclude={"event_type", "timestamp"})


class RbacInitialized(AuditEvent):
    event_type: AuditEventType = AuditEventType.RBAC_INITIALIZED
    admin: UUID


class RoleCreated(AuditEvent):
    event_type: AuditEventType = AuditEventType.ROLE_CREATED
    name: str
    permissions: tuple[Permission, ...]


class RoleAssigned(AuditEvent):
    event_type: AuditEventType = AuditEventType.ROLE_ASSIGNED
    user: UUID
    role: str
    assigned_by: UUID


class PermissionChecked(AuditEvent):
    event_type: AuditEventType = AuditEventType.PERMISSION_CHECKED
    user: UUID
    permission: Permission
    result: bool


class RoleRevoked(AuditEvent):
    event_type: AuditEventType = AuditEventType.ROLE_REVOKED
    user: UUID
    revoked_by: UUID


class ActionExecuted(AuditEvent):
    event_type: AuditEventType = AuditEventType.ACTION_EXECUTED
    user: UUID
    action: Action
    permission: Permission


class AuditRecord(BaseModel):
    """
    A single entry in the audit trail.

    Immutable, hash-chained, append-only. Each record contains its own hash
    and the hash of the previous record, forming a verifiable chain.
    """

    model_config = {"frozen": True}

    sequence_number: int = Field(description="Monotonically increasing sequence number")
    event_type: AuditEventType
    timestamp: datetime
    caller: UUID | None = Field(
        default=None, description="Identity that invoked the operation"
    )
    content: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(description="SHA-256 hash of the previous record")
    record_hash: str = Field(default="", description="SHA-256 hash of this record")

    def compute_hash(self) -> str:
        return compute_record_hash(
            sequence_number=self.sequence_number,
            event_type=self.event_type.value,
            timestamp=self.timestamp,
            caller=self.caller,
            content=self.content,
            previous_hash=self.previous_hash,
        )


def compute_record_hash(
    sequence_number: int,
    event_type: str,
    timestamp: datetime,
    caller: UUID | None,
    content: dict[str, Any],
    previous_hash: str,
) -> str:
    """
    Compute the SHA-256 hash for an audit record.

    Hash = SHA-256(previous_hash || canonical_json(record_fields))

    Any retroactive alteration of a field is detectable by recomputing it.
    """
    hashable = {
        "sequence_number": sequence_number,
        "event_type": event_type,
        "timestamp": as_utc(timestamp).isoformat(),
        "caller": str(caller) if caller else None,
        "content": content,
        "previous_hash": previous_hash,
    }
    canonical = json.dumps(hashable, sort_keys=True, default=str)
    return hashlib.sha256((previous_hash + canonical).encode("utf-8")).hexdigest()
