"""
RBAC Ledger — SQLAlchemy models for the keyed authorization store.

Each table is addressed by exactly one key, and the primary key enforces
uniqueness:

1. roles             — keyed by role name; rows are never updated or deleted
2. user_roles        — keyed by user identity; at most one live assignment
3. rbac_state        — singleton keyed by a fixed string
4. audit_records     — append-only, hash-chained; keyed by sequence number
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase

from rbac_ledger.catalog.schema import (
    AuditRecord,
    AuthorizationState,
    Permission,
    Role,
    UserRoleAssignment,
    as_utc,
)

STATE_KEY = "rbac_state"


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all authorization tables."""
    pass


class RoleDB(Base):
    """
    A role: a named, immutable set of permissions.

    There is no code path that updates or deletes a row in this table.
    """

    __tablename__ = "roles"

    name = Column(String(32), primary_key=True, comment="Unique role name")
    permissions = Column(
        JSON, nullable=False, default=list,
        comment="Permission values, fixed at creation",
    )
    created_at = Column(DateTime(timezone=True), nullable=False)

    def to_model(self) -> Role:
        return Role(
            name=self.name,
            permissions=tuple(Permission(p) for p in self.permissions),
            created_at=as_utc(self.created_at),
        )

    def __repr__(self) -> str:
        return f"<Role name={self.name} permissions={self.permissions}>"


class UserRoleAssignmentDB(Base):
    """
    The role currently bound to a user.

    `role` stores the role name, not a foreign key: consistency with the
    roles table is re-checked on every decision.
    """

    __tablename__ = "user_roles"

    user = Column(Uuid, primary_key=True, comment="Subject user identity")
    role = Column(String(32), nullable=False, comment="Assigned role name")
    assigned_at = Column(DateTime(timezone=True), nullable=False)
    assigned_by = Column(Uuid, nullable=False, comment="Identity that assigned the role")

    __table_args__ = (Index("ix_user_roles_role", "role"),)

    def to_model(self) -> UserRoleAssignment:
        return UserRoleAssignment(
            user=self.user,
            role=self.role,
            assigned_at=as_utc(self.assigned_at),
            assigned_by=self.assigned_by,
        )


class AuthorizationStateDB(Base):
    """Singleton row: the administrator and the running counters."""

    __tablename__ = "rbac_state"

    state_key = Column(String(16), primary_key=True, default=STATE_KEY)
    admin = Column(Uuid, nullable=False)
    role_count = Column(Integer, nullable=False, default=0)
    user_count = Column(
        Integer, nullable=False, default=0,
        comment="Assignments ever created; not decremented on revoke",
    )
    audit_sequence = Column(
        Integer, nullable=False, default=0,
        comment="Last audit sequence number claimed; the row lock serializes appends",
    )
    initialized_at = Column(DateTime(timezone=True), nullable=False)

    def to_model(self) -> AuthorizationState:
        return AuthorizationState(
            admin=self.admin,
            role_count=self.role_count,
            user_count=self.user_count,
            initialized_at=as_utc(self.initialized_at),
        )


class AuditRecordDB(Base):
    """
    A single entry in the audit trail.

    This table is APPEND-ONLY. No rows may be updated or deleted.
    Each row stores SHA-256(previous_hash || canonical_json(fields)),
    so any retroactive alteration is detectable.
    """

    __tablename__ = "audit_records"

    sequence_number = Column(
        Integer, primary_key=True, autoincrement=False,
        comment="Monotonically increasing sequence number",
    )
    event_type = Column(String(32), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    caller = Column(Uuid, nullable=True)
    content = Column(JSON, nullable=False)
    previous_hash = Column(String(64), nullable=False)
    record_hash = Column(String(64), nullable=False, unique=True)

    __table_args__ = (
        Index("ix_audit_event_type_timestamp", "event_type", "timestamp"),
    )

    def to_model(self) -> AuditRecord:
        return AuditRecord(
            sequence_number=self.sequence_number,
            event_type=self.event_type,
            timestamp=as_utc(self.timestamp),
            caller=self.caller,
            content=self.content,
            previous_hash=self.previous_hash,
            record_hash=self.record_hash,
        )

    def __repr__(self) -> str:
        return (
            f"<AuditRecord seq={self.sequence_number} "
            f"type={self.event_type} hash={self.record_hash[:12]}...>"
        )
