"""
Repository Pattern for Watchlist Screening Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories flush but never commit; the caller owns the transaction.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import select, func, update, and_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from classifier import MatchStatus, ScreeningMatch
from match_scorer import MatchDetails
from screener import BatchScreeningResult, RecordDiagnostic, RecordResult
from watchlist import EntityType, ListType, WatchlistEntry, WatchlistSnapshot
from database.models import (
    WatchlistEntryRow,
    EntryAlias,
    ScreeningBatch,
    ScreeningRecordRow,
    ScreeningMatchRecord,
    AuditLog,
    AuditAction,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def parse_uuid(value: Any) -> Optional[UUID]:
    """UUID from a string id, None when it is not one"""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops the offset on read
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================
# WATCHLIST REPOSITORY
# ============================================

class WatchlistRepository:
    """Repository for watchlist entries."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_external_id(self, list_code: str, external_id: str) -> Optional[WatchlistEntryRow]:
        query = select(WatchlistEntryRow).where(
            and_(
                WatchlistEntryRow.list_code == list_code,
                WatchlistEntryRow.external_id == external_id
            )
        )
        return self.session.execute(query).scalar_one_or_none()

    def upsert_entries(self, entries: Iterable[WatchlistEntry]) -> Tuple[int, int]:
        """
        Insert new entries and refresh existing ones.

        Args:
            entries: Entries keyed by (list_code, id)

        Returns:
            Tuple of (created, updated)

        Raises:
            DuplicateEntityError: If the same entry appears twice in one call
        """
        created = 0
        updated = 0
        seen = set()

        for entry in entries:
            key = (entry.list_code, entry.id)
            if key in seen:
                raise DuplicateEntityError(f"Duplicate entry {entry.list_code}/{entry.id}")
            seen.add(key)

            row = self.get_by_external_id(entry.list_code, entry.id)
            if row is None:
                row = WatchlistEntryRow(list_code=entry.list_code, external_id=entry.id)
                self.session.add(row)
                created += 1
            else:
                row.aliases.clear()
                updated += 1

            row.list_name = entry.list_name
            row.list_type = entry.list_type
            row.name = entry.name
            row.entity_type = entry.type
            row.date_of_birth = entry.dob
            row.countries = list(entry.countries)
            row.reason = entry.reason
            row.source_url = entry.source_url
            row.aliases.extend(
                EntryAlias(position=position, alias_name=alias)
                for position, alias in enumerate(entry.aliases)
            )

        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(f"Entry already exists: {e}")

        logger.info(f"Upserted watchlist entries: {created} created, {updated} updated")
        return created, updated

    @staticmethod
    def row_to_entry(row: WatchlistEntryRow) -> WatchlistEntry:
        return WatchlistEntry(
            id=row.external_id,
            name=row.name,
            type=EntityType(row.entity_type),
            list_code=row.list_code,
            list_name=row.list_name,
            list_type=ListType(row.list_type),
            dob=row.date_of_birth,
            countries=tuple(row.countries or ()),
            aliases=tuple(a.alias_name for a in row.aliases),
            reason=row.reason,
            source_url=row.source_url,
        )

    def load_snapshot(self, list_codes: Optional[Iterable[str]] = None) -> WatchlistSnapshot:
        """Build an immutable snapshot from the stored entries"""
        query = select(WatchlistEntryRow)
        if list_codes is not None:
            query = query.where(WatchlistEntryRow.list_code.in_(list(list_codes)))
        query = query.order_by(WatchlistEntryRow.list_code, WatchlistEntryRow.external_id)

        rows = self.session.execute(query).scalars().all()
        return WatchlistSnapshot(self.row_to_entry(row) for row in rows)

    def count_by_list(self) -> Dict[str, int]:
        query = (
            select(WatchlistEntryRow.list_code, func.count(WatchlistEntryRow.id))
            .group_by(WatchlistEntryRow.list_code)
        )
        return {code: count for code, count in self.session.execute(query).all()}


# ============================================
# SCREENING REPOSITORY
# ============================================

def row_to_match(row: ScreeningMatchRecord) -> ScreeningMatch:
    """Rebuild an engine match from its stored row"""
    return ScreeningMatch(
        record_id=row.record_id,
        matched_entry=WatchlistEntry.from_dict(row.entry_snapshot),
        match_score=row.match_score,
        match_details=MatchDetails.from_dict(row.match_details),
        status=MatchStatus(row.status),
        match_id=str(row.id),
        reviewed_by=row.reviewed_by,
        reviewed_at=_as_utc(row.reviewed_at),
        review_notes=row.review_notes,
    )


def row_to_batch_result(batch: ScreeningBatch) -> BatchScreeningResult:
    """Rebuild a batch result, with current match statuses, from its stored rows"""
    return BatchScreeningResult(
        results=[
            RecordResult(
                record_id=record.record_id,
                record_name=record.record_name,
                matches=[row_to_match(m) for m in record.matches],
                diagnostics=[RecordDiagnostic(**d) for d in (record.diagnostics or [])],
            )
            for record in batch.records
        ],
        warnings=list(batch.warnings or []),
    )


class ScreeningRepository:
    """Repository for screened batches and their matches."""

    def __init__(self, session: Session):
        self.session = session

    def save_batch(
        self,
        result: BatchScreeningResult,
        options: Optional[Dict[str, Any]] = None,
        algorithm_version: Optional[str] = None
    ) -> ScreeningBatch:
        """
        Persist a batch result; every match starts out as stored.

        Args:
            result: Engine output
            options: Screening options used (to_dict form)
            algorithm_version: Version of the matching algorithm

        Returns:
            ScreeningBatch with ids assigned to all rows
        """
        batch = ScreeningBatch(
            options=options,
            warnings=list(result.warnings),
            record_count=len(result.results),
            algorithm_version=algorithm_version,
        )
        for position, record in enumerate(result.results):
            record_row = ScreeningRecordRow(
                position=position,
                record_id=record.record_id,
                record_name=record.record_name,
                diagnostics=[d.to_dict() for d in record.diagnostics],
            )
            for match_position, match in enumerate(record.matches):
                entry = match.matched_entry
                record_row.matches.append(ScreeningMatchRecord(
                    position=match_position,
                    record_id=record.record_id,
                    list_code=entry.list_code,
                    entry_external_id=entry.id,
                    entry_snapshot=entry.to_dict(),
                    match_score=match.match_score,
                    match_details=match.match_details.to_dict(),
                    status=match.status,
                    reviewed_by=match.reviewed_by,
                    reviewed_at=match.reviewed_at,
                    review_notes=match.review_notes,
                ))
            batch.records.append(record_row)

        self.session.add(batch)
        self.session.flush()
        logger.debug(f"Saved batch {batch.id} ({batch.record_count} records)")
        return batch

    def get_batch(self, batch_id: Any) -> Optional[ScreeningBatch]:
        key = parse_uuid(batch_id)
        if key is None:
            return None
        return self.session.get(ScreeningBatch, key)

    def get_match(self, match_id: Any, refresh: bool = False) -> Optional[ScreeningMatchRecord]:
        key = parse_uuid(match_id)
        if key is None:
            return None
        return self.session.get(ScreeningMatchRecord, key, populate_existing=refresh)

    def compare_and_set_status(
        self,
        match_id: Any,
        expected: MatchStatus,
        new: MatchStatus,
        actor: str,
        at: datetime,
        notes: Optional[str] = None
    ) -> bool:
        """
        Set a match's status only if it still has the expected status.

        A single conditional UPDATE, so concurrent reviewers cannot both
        succeed.

        Returns:
            True if this call changed the status
        """
        key = parse_uuid(match_id)
        if key is None:
            return False

        statement = (
            update(ScreeningMatchRecord)
            .where(
                and_(
                    ScreeningMatchRecord.id == key,
                    ScreeningMatchRecord.status == expected
                )
            )
            .values(
                status=new,
                reviewed_by=actor,
                reviewed_at=at,
                review_notes=notes,
                version=ScreeningMatchRecord.version + 1
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(statement)
        return result.rowcount == 1


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: Type of action
            resource_type: Type of resource affected
            resource_id: ID of resource
            actor_*: Actor information
            details: Additional details
            old_value: Value before change
            new_value: Value after change
            success: Whether action succeeded
            error_message: Error if failed

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            actor_name=actor_name,
            details=details,
            old_value=old_value,
            new_value=new_value,
            success=success,
            error_message=error_message
        )

        self.session.add(log)
        self.session.flush()
        return log

    def search(
        self,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[AuditLog], int]:
        """
        Search audit logs with filters.

        Returns:
            Tuple of (logs list, total count)
        """
        conditions = []

        if action:
            conditions.append(AuditLog.action == action)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)
        if actor_id:
            conditions.append(AuditLog.actor_id == actor_id)
        if start_date:
            conditions.append(AuditLog.timestamp >= start_date)
        if end_date:
            conditions.append(AuditLog.timestamp <= end_date)

        count_query = select(func.count()).select_from(AuditLog)
        if conditions:
            count_query = count_query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        query = select(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit)

        logs = list(self.session.execute(query).scalars().all())
        return logs, total
