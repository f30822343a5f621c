"""
Database-backed match store.

Review transitions are a conditional UPDATE on the match's status and
are written together with their audit_logs row in one transaction.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from classifier import MatchStatus, ScreeningMatch
from config_manager import get_config
from review import BatchNotFoundError, MatchNotFoundError, MatchStore
from screener import BatchScreeningResult
from database.connection import DatabaseSessionProvider
from database.models import AuditAction
from database.repositories import (
    AuditRepository,
    ScreeningRepository,
    row_to_batch_result,
    row_to_match,
)

logger = logging.getLogger(__name__)


class SqlMatchStore(MatchStore):
    """Match store over the screening_* tables"""

    def __init__(self, provider: DatabaseSessionProvider):
        self.provider = provider

    def register_batch(self, result: BatchScreeningResult,
                       options: Optional[Dict[str, Any]] = None) -> str:
        with self.provider.session_scope() as session:
            batch = ScreeningRepository(session).save_batch(
                result, options, algorithm_version=get_config().algorithm.version
            )
            AuditRepository(session).log(
                action=AuditAction.SCREEN,
                resource_type="screening_batch",
                resource_id=str(batch.id),
                details={'summary': result.summary.to_dict(), 'options': options},
            )
            batch_id = str(batch.id)
        logger.info("Stored batch %s (%d records)", batch_id, len(result.results))
        return batch_id

    def get_batch(self, batch_id: str) -> BatchScreeningResult:
        with self.provider.session_scope() as session:
            batch = ScreeningRepository(session).get_batch(batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            return row_to_batch_result(batch)

    def get_match(self, match_id: str) -> ScreeningMatch:
        with self.provider.session_scope() as session:
            row = ScreeningRepository(session).get_match(match_id)
            if row is None:
                raise MatchNotFoundError(match_id)
            return row_to_match(row)

    def compare_and_set(self, match_id: str, expected: MatchStatus, new: MatchStatus,
                        actor: str, at: datetime,
                        notes: Optional[str] = None) -> Tuple[bool, ScreeningMatch]:
        with self.provider.session_scope() as session:
            repo = ScreeningRepository(session)
            applied = repo.compare_and_set_status(match_id, expected, new, actor, at, notes)
            row = repo.get_match(match_id, refresh=True)
            if row is None:
                raise MatchNotFoundError(match_id)

            if applied:
                AuditRepository(session).log(
                    action=AuditAction.REVIEW,
                    resource_type="screening_match",
                    resource_id=str(row.id),
                    actor_id=actor,
                    actor_name=actor,
                    details={'record_id': row.record_id, 'list_code': row.list_code,
                             'entry_id': row.entry_external_id, 'notes': notes},
                    old_value={'status': expected.value},
                    new_value={'status': new.value},
                )
            return applied, row_to_match(row)
