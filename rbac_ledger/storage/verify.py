"""
Audit trail verifier.

Recomputes every record hash from the database and reports whether the chain
still links back to the genesis hash. Exits 1 when it does not.

Usage:
    python -m rbac_ledger.storage.verify
    python -m rbac_ledger.storage.verify --database-url sqlite:///rbac.db --verbose
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.table import Table

from rbac_ledger.config import settings
from rbac_ledger.service import AuthorizationService
from rbac_ledger.storage.audit import AuditTrail

console = Console()


def event_summary(trail: AuditTrail) -> Table:
    table = Table(title="Records by event", title_justify="left")
    table.add_column("Event")
    table.add_column("Records", justify="right")
    for event_type, n in trail.counts_by_event_type().items():
        table.add_row(event_type.value, str(n), style=None if n else "dim")
    return table


def record_listing(trail: AuditTrail, limit: int) -> Table:
    table = Table(title="Chain", title_justify="left")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Event", style="green")
    table.add_column("Caller")
    table.add_column("Links to", style="dim")
    table.add_column("Hash", style="dim")
    for record in reversed(trail.latest(limit=limit)):
        table.add_row(
            str(record.sequence_number),
            record.event_type.value,
            str(record.caller) if record.caller else "-",
            record.previous_hash[:12],
            record.record_hash[:12],
        )
    return table


def run_audit(trail: AuditTrail, verbose: bool = False) -> bool:
    """
    Verify `trail` and print the outcome.

    With `verbose`, also lists every record with its chain link.
    Returns whether the chain is intact.
    """
    is_valid, verified, message = trail.verify_chain()
    total = trail.count()

    if is_valid:
        console.print(f"[bold green]VALID[/bold green] {message}")
    else:
        console.print(
            f"[bold red]INVALID[/bold red] after {verified} of {total} records: {message}"
        )

    if total:
        console.print(event_summary(trail))
        if verbose:
            console.print(record_listing(trail, total))
    return is_valid


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify the RBAC Ledger audit trail")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    service = AuthorizationService(args.database_url or settings.database_url)
    return 0 if run_audit(service.audit, verbose=args.verbose) else 1


if __name__ == "__main__":
    sys.exit(main())
