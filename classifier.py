"""
Classification of scored candidates into screening matches.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from match_scorer import MatchDetails, ScoredCandidate
from watchlist import LIST_TYPE_PRIORITY, WatchlistEntry


class MatchStatus(str, Enum):
    """Disposition of a single match"""
    PENDING_REVIEW = "pending_review"
    CONFIRMED_MATCH = "confirmed_match"
    FALSE_POSITIVE = "false_positive"


class RecordStatus(str, Enum):
    """Rolled-up status of a screened record"""
    CLEAR = "clear"
    PENDING_REVIEW = "pending_review"
    CONFIRMED_MATCH = "confirmed_match"
    FALSE_POSITIVE = "false_positive"


# Higher is more severe
STATUS_SEVERITY: Dict[MatchStatus, int] = {
    MatchStatus.FALSE_POSITIVE: 0,
    MatchStatus.PENDING_REVIEW: 1,
    MatchStatus.CONFIRMED_MATCH: 2,
}


@dataclass(frozen=True)
class ScreeningMatch:
    """A watchlist entry surfaced for a record

    Matches leave the engine as pending_review without an id; a match
    store assigns the id and only the review workflow changes the status.
    """
    record_id: str
    matched_entry: WatchlistEntry
    match_score: float
    match_details: MatchDetails
    status: MatchStatus = MatchStatus.PENDING_REVIEW
    match_id: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.match_id is not None:
            data['id'] = self.match_id
        data.update({
            'recordId': self.record_id,
            'matchedEntry': self.matched_entry.to_dict(),
            'matchScore': round(self.match_score, 6),
            'matchDetails': self.match_details.to_dict(),
            'status': self.status.value,
        })
        if self.reviewed_by is not None:
            data['reviewedBy'] = self.reviewed_by
            data['reviewedAt'] = self.reviewed_at.isoformat() if self.reviewed_at else None
            data['reviewNotes'] = self.review_notes
        return data


def sort_key(match: ScreeningMatch):
    """Score descending, then list type priority, entry id and list name"""
    entry = match.matched_entry
    return (-match.match_score, LIST_TYPE_PRIORITY[entry.list_type], entry.id, entry.list_name)


def classify(candidates: Iterable[ScoredCandidate], threshold: float, record_id: str) -> List[ScreeningMatch]:
    """Keep candidates at or above threshold as pending matches, most relevant first"""
    matches = [
        ScreeningMatch(
            record_id=record_id,
            matched_entry=candidate.entry,
            match_score=candidate.score,
            match_details=candidate.details,
        )
        for candidate in candidates
        if candidate.score >= threshold
    ]
    matches.sort(key=sort_key)
    return matches


def record_status(matches: Iterable[ScreeningMatch]) -> RecordStatus:
    """clear without matches, otherwise the most severe match status"""
    worst: Optional[MatchStatus] = None
    for match in matches:
        if worst is None or STATUS_SEVERITY[match.status] > STATUS_SEVERITY[worst]:
            worst = match.status
    if worst is None:
        return RecordStatus.CLEAR
    return RecordStatus(worst.value)
