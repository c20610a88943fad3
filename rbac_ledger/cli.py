"""
RBAC Ledger — command-line client.

Usage:
    rbac-ledger init --caller <admin-uuid>
    rbac-ledger create-role manager read,create,update --caller <admin-uuid>
    rbac-ledger assign-role <user-uuid> manager --caller <admin-uuid>
    rbac-ledger check-perm <user-uuid> update
    rbac-ledger execute <user-uuid> delete_resource
    rbac-ledger revoke-role <user-uuid> --caller <admin-uuid>
    rbac-ledger list-roles
    rbac-ledger audit --verbose
    rbac-ledger demo
"""

from __future__ import annotations

import argparse
import logging
import sys
from uuid import UUID, uuid4

import structlog
from rich.console import Console
from rich.table import Table

from rbac_ledger.catalog.schema import Action, Permission
from rbac_ledger.config import settings
from rbac_ledger.governance.errors import RbacError
from rbac_ledger.service import AuthorizationService
from rbac_ledger.storage.verify import run_audit

console = Console()


def configure_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def parse_permissions(value: str) -> list[Permission]:
    return [Permission(p.strip().lower()) for p in value.split(",") if p.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rbac-ledger",
        description="Role-based access control with an auditable decision trail",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to .env settings)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Initialize the system with an admin")
    init.add_argument("--caller", type=UUID, required=True)

    create = sub.add_parser("create-role", help="Create a new role (admin only)")
    create.add_argument("name")
    create.add_argument("permissions", type=parse_permissions, help="e.g. read,create,update")
    create.add_argument("--caller", type=UUID, required=True)

    assign = sub.add_parser("assign-role", help="Assign a role to a user")
    assign.add_argument("user", type=UUID)
    assign.add_argument("role")
    assign.add_argument("--caller", type=UUID, required=True)

    revoke = sub.add_parser("revoke-role", help="Revoke a user's role")
    revoke.add_argument("user", type=UUID)
    revoke.add_argument("--caller", type=UUID, required=True)

    check = sub.add_parser("check-perm", help="Check a user's permission")
    check.add_argument("user", type=UUID)
    check.add_argument("permission", type=Permission)

    execute = sub.add_parser("execute", help="Execute an action as a user")
    execute.add_argument("user", type=UUID)
    execute.add_argument("action", type=Action)

    sub.add_parser("list-roles", help="List all created roles")
    sub.add_parser("state", help="Show admin and counters")

    audit = sub.add_parser("audit", help="Verify the audit trail")
    audit.add_argument("--verbose", "-v", action="store_true")

    sub.add_parser("demo", help="Run the demo scenario in memory")
    return parser


def _print_roles(service: AuthorizationService) -> None:
    table = Table(title="Roles")
    table.add_column("Name", style="cyan")
    table.add_column("Permissions", style="green")
    table.add_column("Created", style="dim")
    for role in service.list_roles():
        table.add_row(
            role.name,
            ", ".join(p.value for p in role.permissions) or "—",
            role.created_at.isoformat()[:19],
        )
    console.print(table)


def run_demo() -> None:
    """Walk through the full lifecycle against an in-memory store."""
    service = AuthorizationService("sqlite:///:memory:")
    admin, user = uuid4(), uuid4()

    service.initialize(admin)
    console.print(f"✓ Initialized with admin {admin}")
    service.create_role(admin, "moderator", [Permission.READ, Permission.UPDATE])
    console.print("✓ Created role [cyan]moderator[/cyan] (read, update)")
    service.assign_role(admin, user, "moderator")
    console.print(f"✓ Assigned moderator to {user}")

    for permission in (Permission.UPDATE, Permission.DELETE):
        result = service.check_permission(user, permission)
        mark = "[green]✓[/green]" if result else "[red]✗[/red]"
        console.print(f"{mark} {permission.value}: {result}")

    try:
        service.execute_action(user, Action.DELETE_RESOURCE)
    except RbacError as exc:
        console.print(f"[red]✗ delete_resource denied[/red] ({exc.kind})")

    service.revoke_role(admin, user)
    console.print(f"✓ Revoked role from {user}")
    try:
        service.check_permission(user, Permission.READ)
    except RbacError as exc:
        console.print(f"[yellow]⚠ check after revoke[/yellow] ({exc.kind})")

    run_audit(service.audit, verbose=True)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    log = structlog.get_logger()
    args = build_parser().parse_args(argv)

    if args.command == "demo":
        run_demo()
        return 0

    service = AuthorizationService(args.database_url or settings.database_url)
    log.info("rbac_ledger.cli.command", command=args.command)

    try:
        if args.command == "init":
            state = service.initialize(args.caller)
            console.print(f"[green]✓ System initialized[/green] admin={state.admin}")
        elif args.command == "create-role":
            role = service.create_role(args.caller, args.name, args.permissions)
            console.print(f"[green]✓ Role created:[/green] {role.name}")
            for permission in role.permissions:
                console.print(f"  ✓ {permission.value}")
        elif args.command == "assign-role":
            assignment = service.assign_role(args.caller, args.user, args.role)
            console.print(
                f"[green]✓ Role assigned:[/green] {assignment.role} → {assignment.user}"
            )
        elif args.command == "revoke-role":
            assignment = service.revoke_role(args.caller, args.user)
            console.print(
                f"[green]✓ Role revoked:[/green] {assignment.role} from {assignment.user}"
            )
        elif args.command == "check-perm":
            result = service.check_permission(args.user, args.permission)
            console.print(f"{args.permission.value}: {'granted' if result else 'denied'}")
        elif args.command == "execute":
            permission = service.execute_action(args.user, args.action)
            console.print(
                f"[green]✓ {args.action.value} authorized[/green] by {permission.value}"
            )
        elif args.command == "list-roles":
            _print_roles(service)
        elif args.command == "state":
            state = service.get_state()
            if state is None:
                console.print("[yellow]Not initialized[/yellow]")
                return 1
            console.print(f"admin={state.admin}")
            console.print(f"role_count={state.role_count} user_count={state.user_count}")
        elif args.command == "audit":
            return 0 if run_audit(service.audit, verbose=args.verbose) else 1
    except RbacError as exc:
        log.warning("rbac_ledger.cli.failed", command=args.command, kind=exc.kind)
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc.message}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
