"""
Database Package for the Watchlist Screening System

This package provides:
- SQLAlchemy ORM models for watchlist entries, screened batches and reviews
- Session provider with transactional scopes
- Repository pattern for data access
- A database-backed match store for the review workflow
- Alembic integration for migrations
"""

from database.models import (
    Base,
    WatchlistEntryRow,
    EntryAlias,
    ScreeningBatch,
    ScreeningRecordRow,
    ScreeningMatchRecord,
    AuditLog,
    AuditAction,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    get_db_provider,
    init_db,
    close_db,
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    DuplicateEntityError,
    WatchlistRepository,
    ScreeningRepository,
    AuditRepository,
)
from database.match_store import SqlMatchStore

__all__ = [
    # Base
    'Base',
    # Models
    'WatchlistEntryRow',
    'EntryAlias',
    'ScreeningBatch',
    'ScreeningRecordRow',
    'ScreeningMatchRecord',
    'AuditLog',
    'AuditAction',
    # Connection
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Repositories
    'RepositoryError',
    'DuplicateEntityError',
    'WatchlistRepository',
    'ScreeningRepository',
    'AuditRepository',
    # Review
    'SqlMatchStore',
]
