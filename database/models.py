"""
SQLAlchemy ORM Models for the Watchlist Screening System

Column types are portable (Uuid, JSON), so the same schema runs on
PostgreSQL in production and SQLite in tests.

Tables:
1. watchlist_entries - Reference-list entries (sanctions, PEP, adverse media)
2. entry_aliases - Alternative names of entries (many-to-one)
3. screening_batches - One row per screened batch
4. screening_records - Screened party records, in input order
5. screening_matches - Matches under review, with status and reviewer
6. audit_logs - System-wide audit trail
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Enum, JSON, Uuid
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

from classifier import MatchStatus
from watchlist import EntityType, ListType

# Base class for all models
Base = declarative_base()


class AuditAction(str, PyEnum):
    """Type of audit action"""
    SCREEN = "SCREEN"
    REVIEW = "REVIEW"
    DATA_UPDATE = "DATA_UPDATE"


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================
# WATCHLIST MODELS
# ============================================

class WatchlistEntryRow(Base, TimestampMixin):
    """
    A watchlist entry as loaded from a list file.

    (list_code, external_id) is unique: entry ids are only unique within
    their list.
    """
    __tablename__ = "watchlist_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    list_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    list_name: Mapped[str] = mapped_column(String(200), nullable=False)
    list_type: Mapped[ListType] = mapped_column(Enum(ListType), nullable=False)

    # Id of the entry on its list
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType), nullable=False, index=True)
    date_of_birth: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    countries: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    aliases: Mapped[List["EntryAlias"]] = relationship(
        "EntryAlias",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="EntryAlias.position",
        lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint('list_code', 'external_id', name='uq_entry_list_external'),
        Index('ix_entry_list_type', 'list_code', 'entity_type'),
    )

    def __repr__(self) -> str:
        return f"<WatchlistEntryRow(list={self.list_code}, id='{self.external_id}', name='{self.name}')>"


class EntryAlias(Base):
    """Alternative name of a watchlist entry"""
    __tablename__ = "entry_aliases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("watchlist_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    alias_name: Mapped[str] = mapped_column(String(500), nullable=False)

    entry: Mapped["WatchlistEntryRow"] = relationship("WatchlistEntryRow", back_populates="aliases")

    def __repr__(self) -> str:
        return f"<EntryAlias(entry_id={self.entry_id}, alias='{self.alias_name}')>"


# ============================================
# SCREENING MODELS
# ============================================

class ScreeningBatch(Base, TimestampMixin):
    """A screened batch and the options it was screened with"""
    __tablename__ = "screening_batches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    options: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    warnings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    algorithm_version: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    records: Mapped[List["ScreeningRecordRow"]] = relationship(
        "ScreeningRecordRow",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ScreeningRecordRow.position",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<ScreeningBatch(id={self.id}, records={self.record_count})>"


class ScreeningRecordRow(Base):
    """A party record within a batch"""
    __tablename__ = "screening_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("screening_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    record_id: Mapped[str] = mapped_column(String(100), nullable=False)
    record_name: Mapped[str] = mapped_column(String(500), nullable=False)
    diagnostics: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    batch: Mapped["ScreeningBatch"] = relationship("ScreeningBatch", back_populates="records")
    matches: Mapped[List["ScreeningMatchRecord"]] = relationship(
        "ScreeningMatchRecord",
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="ScreeningMatchRecord.position",
        lazy="selectin"
    )

    __table_args__ = (
        UniqueConstraint('batch_id', 'record_id', name='uq_record_batch_record'),
    )


class ScreeningMatchRecord(Base, TimestampMixin):
    """
    A match under review.

    The matched entry is kept as a snapshot so the match stays readable
    after the watchlist changes. Status only moves out of pending_review
    through a conditional update; version counts applied updates.
    """
    __tablename__ = "screening_matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    record_row_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("screening_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    record_id: Mapped[str] = mapped_column(String(100), nullable=False)

    list_code: Mapped[str] = mapped_column(String(20), nullable=False)
    entry_external_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entry_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    match_details: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus),
        nullable=False,
        default=MatchStatus.PENDING_REVIEW,
        index=True
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Version for optimistic locking
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    record: Mapped["ScreeningRecordRow"] = relationship("ScreeningRecordRow", back_populates="matches")

    __table_args__ = (
        Index('ix_match_list_entry', 'list_code', 'entry_external_id'),
        CheckConstraint('match_score >= 0 AND match_score <= 1', name='ck_match_score_range'),
    )

    def __repr__(self) -> str:
        return f"<ScreeningMatchRecord(id={self.id}, score={self.match_score}, status={self.status})>"


# ============================================
# AUDIT MODEL
# ============================================

class AuditLog(Base):
    """
    System-wide audit trail.

    Immutable - no updates or deletes allowed.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # No updated_at - audit logs are immutable
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )

    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False, index=True)

    resource_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Before/after state for updates
    old_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index('ix_audit_timestamp_action', 'timestamp', 'action'),
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
        Index('ix_audit_actor', 'actor_id', 'timestamp'),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, resource='{self.resource_type}')>"
