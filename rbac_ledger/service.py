"""
Authorization Service — the six public operations of the RBAC Ledger.

Each operation sequences the same steps inside ONE database transaction:

1. Validate caller authority and input shape
2. Consult the AccessDecisionEngine where a decision is required
3. Read or mutate the keyed records and the singleton counters
4. Append an audit record

Either all of it commits or none of it does. Key uniqueness is enforced by
the store's primary keys: a racing duplicate insert surfaces as KeyConflict
and is never retried.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy import create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rbac_ledger.catalog.schema import (
    MAX_ROLE_NAME_LENGTH,
    Action,
    ActionExecuted,
    AssignmentPolicy,
    AuthorizationState,
    Permission,
    PermissionChecked,
    RbacInitialized,
    Role,
    RoleAssigned,
    RoleCreated,
    RoleRevoked,
    UserRoleAssignment,
    as_utc,
    utc_now,
)
from rbac_ledger.config import settings
from rbac_ledger.governance.decisions import AccessDecisionEngine
from rbac_ledger.governance.errors import (
    KeyConflict,
    KeyNotFound,
    NotAuthorized,
    PermissionDenied,
    RoleNameTooLong,
    RoleNotFound,
)
from rbac_ledger.storage.audit import AuditTrail
from rbac_ledger.storage.models import (
    STATE_KEY,
    AuthorizationStateDB,
    Base,
    RoleDB,
    UserRoleAssignmentDB,
)

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for `database_url`.

    In-memory SQLite shares one connection across sessions. File SQLite
    waits up to `settings.database_busy_timeout` seconds for another
    writer's lock instead of failing with "database is locked".
    """
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.database_busy_timeout,
        }
        if ":memory:" in database_url:
            return create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        return create_engine(database_url, echo=echo, connect_args=connect_args)
    return create_engine(database_url, echo=echo)


def as_identity(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class AuthorizationService:
    """
    RBAC Ledger Service — the orchestration layer of the authorization engine.

    Usage:
        service = AuthorizationService("sqlite:///rbac.db")
        service.initialize(admin_id)
        service.create_role(admin_id, "moderator", [Permission.READ, Permission.UPDATE])
        service.assign_role(admin_id, user_id, "moderator")

        service.check_permission(user_id, Permission.UPDATE)  # True
        service.execute_action(user_id, Action.DELETE_RESOURCE)  # PermissionDenied
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        assignment_policy: AssignmentPolicy | str | None = None,
        seed_role_count: bool | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the service and create the schema if needed.

        Args:
            database_url: SQLAlchemy connection string. Defaults to settings.
            assignment_policy: Who may assign and revoke roles.
            seed_role_count: Start role_count at 1 on initialize.
            clock: Timestamp source. Defaults to the UTC wall clock.
        """
        self.engine = create_db_engine(
            database_url or settings.database_url, echo=settings.database_echo
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.assignment_policy = AssignmentPolicy(
            assignment_policy or settings.assignment_policy
        )
        self.seed_role_count = (
            settings.seed_role_count if seed_role_count is None else seed_role_count
        )
        self.clock = clock or utc_now
        self.decision_engine = AccessDecisionEngine()
        self.audit = AuditTrail(self.SessionLocal)

        Base.metadata.create_all(self.engine)

    # ── Operations ──────────────────────────────────────────────

    def initialize(self, caller: UUID) -> AuthorizationState:
        """
        Create the authorization state with `caller` as administrator.

        Raises:
            KeyConflict: The state already exists.
        """
        caller = as_identity(caller)
        now = self._now()
        with self.SessionLocal.begin() as session:
            if session.get(AuthorizationStateDB, STATE_KEY) is not None:
                raise KeyConflict("Authorization state is already initialized")

            row = AuthorizationStateDB(
                state_key=STATE_KEY,
                admin=caller,
                role_count=1 if self.seed_role_count else 0,
                user_count=0,
                audit_sequence=0,
                initialized_at=now,
            )
            session.add(row)
            self._flush_unique(session, "Authorization state is already initialized")
            self.audit.append(session, RbacInitialized(timestamp=now, admin=caller), caller)
            state = row.to_model()

        logger.info("Authorization state initialized: admin=%s", caller)
        return state

    def create_role(
        self,
        caller: UUID,
        name: str,
        permissions: Iterable[Permission | str],
    ) -> Role:
        """
        Create an immutable role. Admin only.

        Raises:
            NotAuthorized: Caller is not the administrator.
            RoleNameTooLong: Name exceeds 32 characters.
            KeyConflict: A role with this name exists.
        """
        caller = as_identity(caller)
        permissions = tuple(Permission(p) for p in permissions)
        now = self._now()
        with self.SessionLocal.begin() as session:
            state = self._require_state(session)
            self._require_admin(state, caller, "create roles")
            if len(name) > MAX_ROLE_NAME_LENGTH:
                raise RoleNameTooLong(
                    f"Role name exceeds maximum length of {MAX_ROLE_NAME_LENGTH} "
                    f"characters ({len(name)})"
                )
            if session.get(RoleDB, name) is not None:
                raise KeyConflict(f"Role '{name}' already exists")

            row = RoleDB(
                name=name,
                permissions=[p.value for p in permissions],
                created_at=now,
            )
            session.add(row)
            self._flush_unique(session, f"Role '{name}' already exists")
            self._increment(session, AuthorizationStateDB.role_count)
            self.audit.append(
                session,
                RoleCreated(timestamp=now, name=name, permissions=permissions),
                caller,
            )
            role = row.to_model()

        logger.info(
            "Role created: name=%s permissions=%s",
            name, ",".join(p.value for p in permissions),
        )
        return role

    def assign_role(self, caller: UUID, user: UUID, role_name: str) -> UserRoleAssignment:
        """
        Bind `role_name` to `user`.

        Raises:
            NotAuthorized: Policy is admin_only and caller is not the administrator.
            RoleNotFound: No role has this name.
            KeyConflict: The user already has an assignment; revoke it first.
        """
        caller = as_identity(caller)
        user = as_identity(user)
        now = self._now()
        with self.SessionLocal.begin() as session:
            state = self._require_state(session)
            self._require_assigning_authority(state, caller, "assign roles")
            if session.get(RoleDB, role_name) is None:
                raise RoleNotFound(f"Role '{role_name}' not found")
            if session.get(UserRoleAssignmentDB, user) is not None:
                raise KeyConflict(f"User {user} already has a role assigned")

            row = UserRoleAssignmentDB(
                user=user,
                role=role_name,
                assigned_at=now,
                assigned_by=caller,
            )
            session.add(row)
            self._flush_unique(session, f"User {user} already has a role assigned")
            self._increment(session, AuthorizationStateDB.user_count)
            self.audit.append(
                session,
                RoleAssigned(timestamp=now, user=user, role=role_name, assigned_by=caller),
                caller,
            )
            assignment = row.to_model()

        logger.info("Role assigned: user=%s role=%s by=%s", user, role_name, caller)
        return assignment

    def revoke_role(self, caller: UUID, user: UUID) -> UserRoleAssignment:
        """
        Remove the user's assignment and return it.

        user_count is intentionally left unchanged.

        Raises:
            NotAuthorized: Policy is admin_only and caller is not the administrator.
            KeyNotFound: The user has no assignment.
        """
        caller = as_identity(caller)
        user = as_identity(user)
        now = self._now()
        with self.SessionLocal.begin() as session:
            state = self._require_state(session)
            self._require_assigning_authority(state, caller, "revoke roles")
            row = session.get(UserRoleAssignmentDB, user)
            if row is None:
                raise KeyNotFound(f"User {user} has no role assigned")

            assignment = row.to_model()
            session.delete(row)
            self.audit.append(
                session,
                RoleRevoked(timestamp=now, user=user, revoked_by=caller),
                caller,
            )

        logger.info("Role revoked: user=%s role=%s by=%s", user, assignment.role, caller)
        return assignment

    def check_permission(self, user: UUID, permission: Permission | str) -> bool:
        """
        Decide whether `user` holds `permission`.

        Always appends a permission_checked audit record, whatever the result.

        Raises:
            KeyNotFound: The user has no assignment.
            RoleNotFound: The assignment names a role that does not exist.
            UserRoleMismatch: The assignment does not name the consulted role.
        """
        user = as_identity(user)
        permission = Permission(permission)
        now = self._now()
        with self.SessionLocal.begin() as session:
            self._require_state(session)
            assignment, role = self._load_assignment(session, user)
            decision = self.decision_engine.check_permission(assignment, role, permission)
            self.audit.append(
                session,
                PermissionChecked(
                    timestamp=now,
                    user=user,
                    permission=permission,
                    result=decision.granted,
                ),
            )

        logger.info(
            "Permission checked: user=%s permission=%s result=%s",
            user, permission.value, decision.granted,
        )
        return decision.granted

    def execute_action(self, caller: UUID, action: Action | str) -> Permission:
        """
        Authorize `caller` to perform `action` and record it.

        The business action itself is performed by the calling system after
        this returns. Returns the permission that authorized the action.

        Raises:
            KeyNotFound: The caller has no assignment.
            RoleNotFound: The assignment names a role that does not exist.
            UserRoleMismatch: The assignment does not name the consulted role.
            PermissionDenied: The role lacks the required permission.
        """
        caller = as_identity(caller)
        action = Action(action)
        now = self._now()
        with self.SessionLocal.begin() as session:
            self._require_state(session)
            assignment, role = self._load_assignment(session, caller)
            decision = self.decision_engine.authorize_action(assignment, role, action)
            if not decision.granted:
                logger.warning("Permission denied: %s", decision.reason)
                raise PermissionDenied(
                    f"Action {action.value} requires permission "
                    f"{decision.permission.value}, not granted by role '{decision.role}'"
                )
            self.audit.append(
                session,
                ActionExecuted(
                    timestamp=now,
                    user=caller,
                    action=action,
                    permission=decision.permission,
                ),
                caller,
            )

        logger.info("Action executed: user=%s action=%s", caller, action.value)
        return decision.permission

    # ── Queries ─────────────────────────────────────────────────

    def get_state(self) -> AuthorizationState | None:
        with self.SessionLocal() as session:
            row = session.get(AuthorizationStateDB, STATE_KEY)
            return row.to_model() if row else None

    def get_role(self, name: str) -> Role | None:
        with self.SessionLocal() as session:
            row = session.get(RoleDB, name)
            return row.to_model() if row else None

    def get_assignment(self, user: UUID) -> UserRoleAssignment | None:
        with self.SessionLocal() as session:
            row = session.get(UserRoleAssignmentDB, as_identity(user))
            return row.to_model() if row else None

    def list_roles(self) -> list[Role]:
        """All roles, oldest first."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(RoleDB).order_by(RoleDB.created_at.asc(), RoleDB.name.asc())
            ).scalars().all()
            return [row.to_model() for row in rows]

    # ── Internal ────────────────────────────────────────────────

    def _now(self) -> datetime:
        return as_utc(self.clock())

    @staticmethod
    def _require_state(session: Session) -> AuthorizationState:
        row = session.get(AuthorizationStateDB, STATE_KEY)
        if row is None:
            raise KeyNotFound("Authorization state is not initialized")
        return row.to_model()

    @staticmethod
    def _require_admin(state: AuthorizationState, caller: UUID, operation: str) -> None:
        if caller != state.admin:
            logger.warning("Rejected non-admin caller %s: %s", caller, operation)
            raise NotAuthorized(f"Only admin can {operation}")

    def _require_assigning_authority(
        self,
        state: AuthorizationState,
        caller: UUID,
        operation: str,
    ) -> None:
        if self.assignment_policy is AssignmentPolicy.ADMIN_ONLY:
            self._require_admin(state, caller, operation)

    @staticmethod
    def _load_assignment(
        session: Session,
        user: UUID,
    ) -> tuple[UserRoleAssignment, Role | None]:
        row = session.get(UserRoleAssignmentDB, user)
        if row is None:
            raise KeyNotFound(f"User {user} has no role assigned")
        assignment = row.to_model()
        role_row = session.get(RoleDB, assignment.role)
        return assignment, role_row.to_model() if role_row else None

    @staticmethod
    def _increment(session: Session, counter) -> None:
        session.execute(
            update(AuthorizationStateDB)
            .where(AuthorizationStateDB.state_key == STATE_KEY)
            .values({counter: counter + 1})
        )

    @staticmethod
    def _flush_unique(session: Session, message: str) -> None:
        """Flush pending inserts, translating a key collision into KeyConflict."""
        try:
            session.flush()
        except IntegrityError as exc:
            raise KeyConflict(message) from exc
