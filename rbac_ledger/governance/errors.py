"""
Authorization errors — the closed set of failure kinds.

Every error is terminal for the operation that raised it. The surrounding
transaction is rolled back, so no record, counter or audit entry persists.
"""

from __future__ import annotations


class RbacError(Exception):
    """Base class for every authorization failure."""

    kind = "RbacError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class RoleNameTooLong(RbacError):
    """Raised when a role name exceeds the maximum length."""

    kind = "RoleNameTooLong"


class RoleNotFound(RbacError):
    """Raised when a role lookup by name misses."""

    kind = "RoleNotFound"


class UserRoleMismatch(RbacError):
    """Raised when an assignment does not name the role being consulted."""

    kind = "UserRoleMismatch"


class PermissionDenied(RbacError):
    """Raised when the role lacks the permission an action requires."""

    kind = "PermissionDenied"


class NotAuthorized(RbacError):
    """Raised when a non-admin caller attempts an admin-only operation."""

    kind = "NotAuthorized"


class KeyConflict(RbacError):
    """Raised when creating a record whose key already exists."""

    kind = "KeyConflict"


class KeyNotFound(RbacError):
    """Raised when operating on a record whose key does not exist."""

    kind = "KeyNotFound"
