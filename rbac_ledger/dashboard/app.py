"""
RBAC Ledger — HTTP API.

FastAPI application exposing the authorization engine:
- System initialization and state
- Role creation and lookup
- Role assignment and revocation
- Permission checks and action authorization
- Audit trail listing and verification

The caller identity arrives in the `X-Caller-Id` header. Authentication is
performed upstream; this service trusts the header it is given.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rbac_ledger.catalog.schema import (
    Action,
    AuditEventType,
    AuditRecord,
    AuthorizationState,
    Permission,
    Role,
    UserRoleAssignment,
)
from rbac_ledger.config import settings
from rbac_ledger.governance.errors import (
    KeyConflict,
    KeyNotFound,
    NotAuthorized,
    PermissionDenied,
    RbacError,
    RoleNameTooLong,
    RoleNotFound,
    UserRoleMismatch,
)
from rbac_ledger.service import AuthorizationService

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[RbacError], int] = {
    KeyNotFound: 404,
    RoleNotFound: 404,
    KeyConflict: 409,
    UserRoleMismatch: 409,
    NotAuthorized: 403,
    PermissionDenied: 403,
    RoleNameTooLong: 422,
}


# ── Pydantic request / response models ────────────────────────


class CreateRoleRequest(BaseModel):
    name: str
    permissions: list[Permission] = []


class AssignRoleRequest(BaseModel):
    user: UUID
    role: str


class CheckPermissionRequest(BaseModel):
    user: UUID
    permission: Permission


class CheckPermissionResponse(BaseModel):
    user: UUID
    permission: Permission
    result: bool


class ExecuteActionRequest(BaseModel):
    action: Action


class ExecuteActionResponse(BaseModel):
    user: UUID
    action: Action
    permission: Permission


class AuditVerification(BaseModel):
    valid: bool
    records_verified: int
    message: str


CallerId = Annotated[UUID, Header(alias="X-Caller-Id")]


def get_service(request: Request) -> AuthorizationService:
    return request.app.state.service


Service = Annotated[AuthorizationService, Depends(get_service)]


# ── Application factory ────────────────────────────────────────


def create_app(service: AuthorizationService | None = None) -> FastAPI:
    """Build the API around `service`, or one created from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = AuthorizationService(settings.database_url)
        logger.info(
            "RBAC Ledger API starting: assignment_policy=%s",
            app.state.service.assignment_policy.value,
        )
        yield
        logger.info("RBAC Ledger API shutting down")

    app = FastAPI(title="RBAC Ledger", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(RbacError)
    async def rbac_error_handler(request: Request, exc: RbacError) -> JSONResponse:
        status = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(
            status_code=status,
            content={"error": exc.kind, "detail": exc.message},
        )

    @app.post("/api/initialize", status_code=201)
    def api_initialize(caller: CallerId, service: Service) -> AuthorizationState:
        return service.initialize(caller)

    @app.get("/api/state")
    def api_state(service: Service) -> AuthorizationState:
        state = service.get_state()
        if state is None:
            raise KeyNotFound("Authorization state is not initialized")
        return state

    @app.post("/api/roles", status_code=201)
    def api_create_role(
        req: CreateRoleRequest, caller: CallerId, service: Service
    ) -> Role:
        return service.create_role(caller, req.name, req.permissions)

    @app.get("/api/roles")
    def api_list_roles(service: Service) -> list[Role]:
        return service.list_roles()

    @app.get("/api/roles/{name}")
    def api_get_role(name: str, service: Service) -> Role:
        role = service.get_role(name)
        if role is None:
            raise RoleNotFound(f"Role '{name}' not found")
        return role

    @app.post("/api/assignments", status_code=201)
    def api_assign_role(
        req: AssignRoleRequest, caller: CallerId, service: Service
    ) -> UserRoleAssignment:
        return service.assign_role(caller, req.user, req.role)

    @app.get("/api/assignments/{user}")
    def api_get_assignment(user: UUID, service: Service) -> UserRoleAssignment:
        assignment = service.get_assignment(user)
        if assignment is None:
            raise KeyNotFound(f"User {user} has no role assigned")
        return assignment

    @app.delete("/api/assignments/{user}")
    def api_revoke_role(user: UUID, caller: CallerId, service: Service) -> UserRoleAssignment:
        return service.revoke_role(caller, user)

    @app.post("/api/permissions/check")
    def api_check_permission(
        req: CheckPermissionRequest, service: Service
    ) -> CheckPermissionResponse:
        result = service.check_permission(req.user, req.permission)
        return CheckPermissionResponse(user=req.user, permission=req.permission, result=result)

    @app.post("/api/actions/execute")
    def api_execute_action(
        req: ExecuteActionRequest, caller: CallerId, service: Service
    ) -> ExecuteActionResponse:
        permission = service.execute_action(caller, req.action)
        return ExecuteActionResponse(user=caller, action=req.action, permission=permission)

    @app.get("/api/audit")
    def api_audit(
        service: Service,
        limit: int = 50,
        event_type: AuditEventType | None = None,
    ) -> list[AuditRecord]:
        if event_type is not None:
            return service.audit.by_event_type(event_type, limit=limit)
        return service.audit.latest(limit=limit)

    @app.get("/api/audit/verify")
    def api_audit_verify(service: Service) -> AuditVerification:
        valid, verified, message = service.audit.verify_chain()
        return AuditVerification(valid=valid, records_verified=verified, message=message)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok"}

    return app


app = create_app()
