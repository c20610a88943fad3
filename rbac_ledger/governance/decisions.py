"""
Access Decision Engine — pure authorization logic.

Every permission check and every action attempt is decided here. The engine
never touches storage: the orchestration layer looks up the user's assignment
and the role it names, then asks the engine for a decision.

Before deciding, the engine re-validates that the assignment really names the
role that was loaded. A mismatch is a hard error, never a silent deny.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from uuid import UUID

from rbac_ledger.catalog.schema import (
    Action,
    Permission,
    Role,
    UserRoleAssignment,
    required_permission,
)
from rbac_ledger.governance.errors import RoleNotFound, UserRoleMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    """Result of deciding a permission for a user."""

    user: UUID
    role: str
    permission: Permission
    granted: bool
    action: Action | None = None

    @property
    def reason(self) -> str:
        verb = "grants" if self.granted else "does not grant"
        subject = f"action {self.action.value}" if self.action else "check"
        return (
            f"Role '{self.role}' {verb} permission {self.permission.value} "
            f"({subject} by {self.user})"
        )


class AccessDecisionEngine:
    """
    Central decision engine.

    Stateless: the same assignment, role and permission always produce the
    same decision.
    """

    def resolve_role(
        self,
        assignment: UserRoleAssignment,
        role: Role | None,
    ) -> Role:
        """
        Validate that `role` is the record named by `assignment`.

        Raises:
            RoleNotFound: The assignment names a role that does not exist.
            UserRoleMismatch: The loaded role is not the one assigned.
        """
        if role is None:
            raise RoleNotFound(
                f"Role '{assignment.role}' assigned to {assignment.user} does not exist"
            )
        if assignment.role != role.name:
            raise UserRoleMismatch(
                f"Assignment for {assignment.user} names role '{assignment.role}' "
                f"but role '{role.name}' was consulted"
            )
        return role

    def check_permission(
        self,
        assignment: UserRoleAssignment,
        role: Role | None,
        permission: Permission,
    ) -> AccessDecision:
        """Decide whether the assigned role grants `permission`."""
        resolved = self.resolve_role(assignment, role)
        permission = Permission(permission)
        return AccessDecision(
            user=assignment.user,
            role=resolved.name,
            permission=permission,
            granted=resolved.grants(permission),
        )

    def authorize_action(
        self,
        assignment: UserRoleAssignment,
        role: Role | None,
        action: Action,
    ) -> AccessDecision:
        """Decide whether the assigned role grants the permission `action` requires."""
        action = Action(action)
        decision = self.check_permission(assignment, role, required_permission(action))
        decision = replace(decision, action=action)
        if not decision.granted:
            logger.debug("Action denied: %s", decision.reason)
        return decision
