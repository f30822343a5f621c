"""
Tests for classification of scored candidates.
"""

import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from classifier import (
    MatchStatus,
    RecordStatus,
    STATUS_SEVERITY,
    classify,
    record_status,
)
from match_scorer import MatchDetails, ScoredCandidate
from watchlist import EntityType, ListType, WatchlistEntry


def entry(entry_id, list_type=ListType.SANCTIONS, list_code="ofac"):
    return WatchlistEntry(
        id=entry_id,
        name="John Smith",
        type=EntityType.INDIVIDUAL,
        list_code=list_code,
        list_name=list_code.upper(),
        list_type=list_type,
    )


def candidate(entry_id, score, list_type=ListType.SANCTIONS, list_code="ofac"):
    return ScoredCandidate(entry(entry_id, list_type, list_code), MatchDetails(name_score=score), score)


class TestClassify:
    """Tests for classify."""

    def test_threshold_inclusive(self):
        """Candidates at exactly the threshold are kept."""
        matches = classify([candidate("A", 0.7), candidate("B", 0.69999)], 0.7, "r1")
        assert [m.matched_entry.id for m in matches] == ["A"]

    def test_all_pending(self):
        """The engine only ever emits pending_review."""
        matches = classify([candidate("A", 0.9), candidate("B", 0.8)], 0.5, "r1")
        assert all(m.status == MatchStatus.PENDING_REVIEW for m in matches)
        assert all(m.match_id is None for m in matches)
        assert all(m.record_id == "r1" for m in matches)

    def test_sorted_by_score(self):
        """Higher scores come first."""
        matches = classify([candidate("A", 0.75), candidate("B", 0.95), candidate("C", 0.85)], 0.7, "r1")
        assert [m.matched_entry.id for m in matches] == ["B", "C", "A"]

    def test_ties_by_list_type(self):
        """Equal scores order sanctions, then PEP, then adverse media."""
        matches = classify([
            candidate("A", 0.8, ListType.ADVERSE_MEDIA, "adverse_media"),
            candidate("B", 0.8, ListType.PEP, "pep"),
            candidate("C", 0.8, ListType.SANCTIONS, "ofac"),
        ], 0.7, "r1")
        assert [m.matched_entry.list_type for m in matches] == [
            ListType.SANCTIONS, ListType.PEP, ListType.ADVERSE_MEDIA]

    def test_ties_by_entry_id(self):
        """Equal scores and list types order by entry id."""
        matches = classify([candidate("Z-9", 0.8), candidate("A-1", 0.8), candidate("M-5", 0.8)], 0.7, "r1")
        assert [m.matched_entry.id for m in matches] == ["A-1", "M-5", "Z-9"]

    def test_none_kept(self):
        """No candidate above threshold yields no matches."""
        assert classify([candidate("A", 0.4)], 0.7, "r1") == []


class TestRecordStatus:
    """Tests for the rolled-up record status."""

    def test_clear_without_matches(self):
        """A record with no matches is clear."""
        assert record_status([]) == RecordStatus.CLEAR

    def test_pending(self):
        """Pending matches make the record pending."""
        matches = classify([candidate("A", 0.9)], 0.7, "r1")
        assert record_status(matches) == RecordStatus.PENDING_REVIEW

    def test_confirmed_most_severe(self):
        """A confirmed match outranks pending and false positive ones."""
        matches = classify([candidate("A", 0.9), candidate("B", 0.8), candidate("C", 0.75)], 0.7, "r1")
        matches = [
            replace(matches[0], status=MatchStatus.FALSE_POSITIVE),
            replace(matches[1], status=MatchStatus.CONFIRMED_MATCH),
            matches[2],
        ]
        assert record_status(matches) == RecordStatus.CONFIRMED_MATCH

    def test_only_false_positives(self):
        """A record whose matches are all false positives reports false_positive."""
        matches = [replace(m, status=MatchStatus.FALSE_POSITIVE)
                   for m in classify([candidate("A", 0.9)], 0.7, "r1")]
        assert record_status(matches) == RecordStatus.FALSE_POSITIVE

    def test_severity_covers_every_status(self):
        """Every match status has a severity."""
        assert set(STATUS_SEVERITY) == set(MatchStatus)


class TestScreeningMatchSerialization:
    """Tests for ScreeningMatch.to_dict."""

    def test_engine_output_has_no_id(self):
        """Unregistered matches serialize without id or review fields."""
        data = classify([candidate("A", 0.9)], 0.7, "r1")[0].to_dict()
        assert "id" not in data
        assert "reviewedBy" not in data
        assert data["status"] == "pending_review"
        assert data["matchedEntry"]["id"] == "A"
        assert data["matchDetails"]["nameScore"] == 0.9
