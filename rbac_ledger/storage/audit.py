"""
Audit Trail — append-only, hash-chained record of every operation.

Every public operation of the authorization engine appends exactly one record,
inside the same transaction as its storage mutation, so a failed operation
leaves no record behind. Permission checks are recorded too: downstream
consumers rely on a record existing for every decision.

The trail provides:
- Append with automatic hash chain computation
- Verification of the full hash chain
- Queries by event type and recency
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from rbac_ledger.catalog.schema import (
    GENESIS_HASH,
    AuditEvent,
    AuditEventType,
    AuditRecord,
    compute_record_hash,
)
from rbac_ledger.storage.models import STATE_KEY, AuditRecordDB, AuthorizationStateDB

logger = logging.getLogger(__name__)


class AuditTrail:
    """
    Audit trail over the `audit_records` table.

    Usage:
        trail = AuditTrail(session_factory)
        with session_factory.begin() as session:
            ...  # mutate records
            trail.append(session, RoleCreated(...), caller=admin_id)

        ok, verified, message = trail.verify_chain()
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.SessionLocal = session_factory

    def append(
        self,
        session: Session,
        event: AuditEvent,
        caller: UUID | None = None,
    ) -> AuditRecord:
        """
        Append a record for `event` inside the caller's transaction.

        This is the ONLY write operation. There is no update, no delete.
        The sequence number is claimed on the state row before the tail is
        read, so concurrent appenders queue on that row's write lock and
        each one links to the record committed before it.
        """
        sequence_number = self._claim_sequence(session)
        previous_hash = session.execute(
            select(AuditRecordDB.record_hash)
            .where(AuditRecordDB.sequence_number < sequence_number)
            .order_by(AuditRecordDB.sequence_number.desc())
            .limit(1)
        ).scalar_one_or_none() or GENESIS_HASH
        content = event.content()

        record_hash = compute_record_hash(
            sequence_number=sequence_number,
            event_type=event.event_type.value,
            timestamp=event.timestamp,
            caller=caller,
            content=content,
            previous_hash=previous_hash,
        )
        row = AuditRecordDB(
            sequence_number=sequence_number,
            event_type=event.event_type.value,
            timestamp=event.timestamp,
            caller=caller,
            content=content,
            previous_hash=previous_hash,
            record_hash=record_hash,
        )
        session.add(row)
        session.flush()

        logger.debug(
            "Audit record appended: seq=%d type=%s hash=%s",
            sequence_number, event.event_type.value, record_hash[:16],
        )
        return row.to_model()

    @staticmethod
    def _claim_sequence(session: Session) -> int:
        """Bump the state row's audit counter and return the new value."""
        session.execute(
            update(AuthorizationStateDB)
            .where(AuthorizationStateDB.state_key == STATE_KEY)
            .values(audit_sequence=AuthorizationStateDB.audit_sequence + 1)
        )
        return session.execute(
            select(AuthorizationStateDB.audit_sequence)
            .where(AuthorizationStateDB.state_key == STATE_KEY)
        ).scalar_one()

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Verify the integrity of the entire hash chain.

        Walks every record from the first forward, recomputing each hash and
        checking the linkage to its predecessor.

        Returns:
            Tuple of (is_valid, records_verified, message).
        """
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditRecordDB).order_by(AuditRecordDB.sequence_number.asc())
            ).scalars().all()

        if not rows:
            return True, 0, "Audit trail is empty"

        expected_previous = GENESIS_HASH
        for i, row in enumerate(rows):
            if row.sequence_number != i + 1:
                return (
                    False, i,
                    f"Sequence gap: found {row.sequence_number}, expected {i + 1}",
                )
            if row.previous_hash != expected_previous:
                return (
                    False, i,
                    f"Chain break at sequence {row.sequence_number}: "
                    f"previous_hash does not match prior record's hash",
                )
            computed = row.to_model().compute_hash()
            if row.record_hash != computed:
                return (
                    False, i,
                    f"Hash mismatch at sequence {row.sequence_number}: "
                    f"stored={row.record_hash[:16]}... "
                    f"computed={computed[:16]}...",
                )
            expected_previous = row.record_hash

        return True, len(rows), f"Chain verified: {len(rows)} records, integrity intact"

    def latest(self, limit: int = 50) -> list[AuditRecord]:
        """Most recent records, newest first."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditRecordDB)
                .order_by(AuditRecordDB.sequence_number.desc())
                .limit(limit)
            ).scalars().all()
            return [row.to_model() for row in rows]

    def by_event_type(
        self,
        event_type: AuditEventType,
        limit: int = 100,
    ) -> list[AuditRecord]:
        """Records of one event type, oldest first."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditRecordDB)
                .where(AuditRecordDB.event_type == AuditEventType(event_type).value)
                .order_by(AuditRecordDB.sequence_number.asc())
                .limit(limit)
            ).scalars().all()
            return [row.to_model() for row in rows]

    def count(self) -> int:
        with self.SessionLocal() as session:
            return session.execute(
                select(func.count()).select_from(AuditRecordDB)
            ).scalar() or 0

    def counts_by_event_type(self) -> dict[AuditEventType, int]:
        """Number of records per event type, zero for types never recorded."""
        with self.SessionLocal() as session:
            rows = session.execute(
                select(AuditRecordDB.event_type, func.count())
                .group_by(AuditRecordDB.event_type)
            ).all()
        found = {event_type: n for event_type, n in rows}
        return {t: found.get(t.value, 0) for t in AuditEventType}
