"""
Review workflow for screening matches.

A match leaves the engine as pending_review. A reviewer then resolves it
once, either as confirmed_match or false_positive. Both are terminal:
reopening a resolved match means screening the record again.

Concurrent reviews of the same match are settled by compare-and-set on
the status field, so exactly one reviewer wins and the other observes
the terminal state.
"""

import uuid
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from classifier import MatchStatus, ScreeningMatch
from log_utils import sanitize_for_logging
from screener import BatchScreeningResult, RecordDiagnostic, RecordResult
from validation import InputValidationError

logger = logging.getLogger(__name__)


# Allowed transitions; terminal states have none
TRANSITIONS: Dict[MatchStatus, FrozenSet[MatchStatus]] = {
    MatchStatus.PENDING_REVIEW: frozenset({MatchStatus.CONFIRMED_MATCH, MatchStatus.FALSE_POSITIVE}),
    MatchStatus.CONFIRMED_MATCH: frozenset(),
    MatchStatus.FALSE_POSITIVE: frozenset(),
}


class ReviewError(Exception):
    """Base exception for review operations"""
    pass


class MatchNotFoundError(ReviewError):
    """Raised when a match id is unknown"""
    def __init__(self, match_id: str):
        self.match_id = match_id
        super().__init__(f"Match not found: {match_id}")


class BatchNotFoundError(ReviewError):
    """Raised when a batch id is unknown"""
    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


def is_terminal(status: MatchStatus) -> bool:
    return not TRANSITIONS[status]


@dataclass(frozen=True)
class ReviewOutcome:
    """What a review call did

    applied is False when the match was already resolved; status then
    reports the existing terminal status.
    """
    match_id: str
    status: MatchStatus
    applied: bool
    previous_status: MatchStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'matchId': self.match_id,
            'status': self.status.value,
            'applied': self.applied,
            'previousStatus': self.previous_status.value,
            'reviewedBy': self.reviewed_by,
            'reviewedAt': self.reviewed_at.isoformat() if self.reviewed_at else None,
        }


@dataclass(frozen=True)
class ReviewEvent:
    """An applied status transition, delivered to workflow listeners"""
    match_id: str
    record_id: str
    entry_id: str
    list_code: str
    previous_status: MatchStatus
    new_status: MatchStatus
    actor: str
    at: datetime
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'match_id': self.match_id,
            'record_id': self.record_id,
            'entry_id': self.entry_id,
            'list_code': self.list_code,
            'previous_status': self.previous_status.value,
            'new_status': self.new_status.value,
            'actor': self.actor,
            'at': self.at.isoformat(),
            'notes': self.notes,
        }


class MatchStore(ABC):
    """Persistence boundary for screened batches and their matches"""

    @abstractmethod
    def register_batch(self, result: BatchScreeningResult,
                       options: Optional[Dict[str, Any]] = None) -> str:
        """Assign match ids and store a batch, returning the batch id"""

    @abstractmethod
    def get_batch(self, batch_id: str) -> BatchScreeningResult:
        """Rebuild a batch result with current match statuses"""

    @abstractmethod
    def get_match(self, match_id: str) -> ScreeningMatch:
        """Current state of one match"""

    @abstractmethod
    def compare_and_set(self, match_id: str, expected: MatchStatus, new: MatchStatus,
                        actor: str, at: datetime,
                        notes: Optional[str] = None) -> Tuple[bool, ScreeningMatch]:
        """Set the status only if it still equals expected

        Returns:
            (applied, match after the call)

        Raises:
            MatchNotFoundError: If the match id is unknown
        """


@dataclass(frozen=True)
class _StoredRecord:
    record_id: str
    record_name: str
    diagnostics: Tuple[RecordDiagnostic, ...]
    match_ids: Tuple[str, ...]


@dataclass(frozen=True)
class _StoredBatch:
    records: Tuple[_StoredRecord, ...]
    warnings: Tuple[str, ...]


def assign_match_ids(result: BatchScreeningResult) -> List[Tuple[RecordResult, List[ScreeningMatch]]]:
    """Give every match of a batch a fresh id, keeping order"""
    return [
        (record, [replace(match, match_id=str(uuid.uuid4())) for match in record.matches])
        for record in result.results
    ]


class InMemoryMatchStore(MatchStore):
    """Process-local match store with a lock per match"""

    def __init__(self):
        self._lock = threading.Lock()
        self._batches: Dict[str, _StoredBatch] = {}
        self._matches: Dict[str, ScreeningMatch] = {}
        self._match_locks: Dict[str, threading.Lock] = {}

    def register_batch(self, result: BatchScreeningResult,
                       options: Optional[Dict[str, Any]] = None) -> str:
        batch_id = str(uuid.uuid4())
        records = []
        with self._lock:
            for record, matches in assign_match_ids(result):
                for match in matches:
                    self._matches[match.match_id] = match
                    self._match_locks[match.match_id] = threading.Lock()
                records.append(_StoredRecord(
                    record_id=record.record_id,
                    record_name=record.record_name,
                    diagnostics=tuple(record.diagnostics),
                    match_ids=tuple(m.match_id for m in matches),
                ))
            self._batches[batch_id] = _StoredBatch(records=tuple(records), warnings=tuple(result.warnings))
        logger.info("Registered batch %s (%d records)", batch_id, len(records))
        return batch_id

    def get_batch(self, batch_id: str) -> BatchScreeningResult:
        stored = self._batches.get(batch_id)
        if stored is None:
            raise BatchNotFoundError(batch_id)
        return BatchScreeningResult(
            results=[
                RecordResult(
                    record_id=r.record_id,
                    record_name=r.record_name,
                    matches=[self._matches[mid] for mid in r.match_ids],
                    diagnostics=list(r.diagnostics),
                )
                for r in stored.records
            ],
            warnings=list(stored.warnings),
        )

    def get_match(self, match_id: str) -> ScreeningMatch:
        match = self._matches.get(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    def compare_and_set(self, match_id: str, expected: MatchStatus, new: MatchStatus,
                        actor: str, at: datetime,
                        notes: Optional[str] = None) -> Tuple[bool, ScreeningMatch]:
        lock = self._match_locks.get(match_id)
        if lock is None:
            raise MatchNotFoundError(match_id)
        with lock:
            current = self._matches[match_id]
            if current.status != expected:
                return False, current
            updated = replace(current, status=new, reviewed_by=actor, reviewed_at=at, review_notes=notes)
            self._matches[match_id] = updated
            return True, updated


ReviewListener = Callable[[ReviewEvent], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReviewWorkflow:
    """Resolves pending matches on behalf of named reviewers"""

    def __init__(self, store: MatchStore, clock: Optional[Callable[[], datetime]] = None,
                 listeners: Optional[Sequence[ReviewListener]] = None):
        """Initialize workflow

        Args:
            store: Match store holding the matches under review
            clock: Timestamp source (UTC now by default)
            listeners: Callables notified of every applied transition
        """
        self.store = store
        self.clock = clock or _utc_now
        self.listeners: List[ReviewListener] = list(listeners or [])

    def add_listener(self, listener: ReviewListener) -> None:
        self.listeners.append(listener)

    def confirm_match(self, match_id: str, actor: str, notes: Optional[str] = None) -> ReviewOutcome:
        """Resolve a pending match as a true hit"""
        return self._resolve(match_id, MatchStatus.CONFIRMED_MATCH, actor, notes)

    def mark_false_positive(self, match_id: str, actor: str, notes: Optional[str] = None) -> ReviewOutcome:
        """Resolve a pending match as not the listed party"""
        return self._resolve(match_id, MatchStatus.FALSE_POSITIVE, actor, notes)

    def _resolve(self, match_id: str, target: MatchStatus, actor: str,
                 notes: Optional[str]) -> ReviewOutcome:
        actor = (actor or '').strip()
        if not actor:
            raise InputValidationError(
                "Reviewer identity is required",
                field="actor",
                code="MISSING_ACTOR",
                suggestion="Pass the id or name of the reviewer"
            )

        current = self.store.get_match(match_id)
        if is_terminal(current.status):
            return self._noop(current)

        at = self.clock()
        applied, match = self.store.compare_and_set(
            match_id, MatchStatus.PENDING_REVIEW, target, actor, at, notes
        )
        if not applied:
            # Lost the race to another reviewer
            return self._noop(match)

        logger.info("Match %s: %s -> %s by %s", match_id,
                    MatchStatus.PENDING_REVIEW.value, target.value, sanitize_for_logging(actor))
        self._notify(ReviewEvent(
            match_id=match_id,
            record_id=match.record_id,
            entry_id=match.matched_entry.id,
            list_code=match.matched_entry.list_code,
            previous_status=MatchStatus.PENDING_REVIEW,
            new_status=target,
            actor=actor,
            at=at,
            notes=notes,
        ))
        return ReviewOutcome(
            match_id=match_id,
            status=target,
            applied=True,
            previous_status=MatchStatus.PENDING_REVIEW,
            reviewed_by=actor,
            reviewed_at=at,
        )

    def _noop(self, match: ScreeningMatch) -> ReviewOutcome:
        logger.info("Match %s already resolved as %s", match.match_id, match.status.value)
        return ReviewOutcome(
            match_id=match.match_id,
            status=match.status,
            applied=False,
            previous_status=match.status,
            reviewed_by=match.reviewed_by,
            reviewed_at=match.reviewed_at,
        )

    def _notify(self, event: ReviewEvent) -> None:
        for listener in self.listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Review listener failed for match %s", event.match_id)
