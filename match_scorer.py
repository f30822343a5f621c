"""
Multi-factor match scoring.

A candidate's score is driven by name similarity; date of birth and
country only boost it:

    match_score = min(1, name_score * (1 + w_dob * dob_boost + w_country * country_boost))

so a better name, an exact DOB or a country match can never lower a score.
"""

import re
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from config_manager import MatchingConfig
from log_utils import sanitize_for_logging
from name_normalizer import NormalizedName, normalize_for_type
from similarity import name_similarity
from watchlist import WatchlistEntry

logger = logging.getLogger(__name__)

# YYYY, YYYY-MM, YYYY-MM-DD, optionally followed by a time part
DOB_PATTERN = re.compile(r'^(\d{4})(?:-(\d{1,2})(?:-(\d{1,2}))?)?(?:[T ].*)?$')

COUNTRY_ALIASES: Tuple[Tuple[str, ...], ...] = (
    ('united states', 'us', 'usa', 'united states of america', 'america'),
    ('united kingdom', 'uk', 'gb', 'gbr', 'great britain', 'britain', 'england'),
    ('russia', 'russian federation', 'ru', 'rus'),
    ('iran', 'islamic republic of iran', 'persia', 'ir', 'irn'),
    ('north korea', 'dprk', "democratic people's republic of korea", 'kp', 'prk'),
    ('south korea', 'korea', 'republic of korea', 'kr', 'kor'),
    ('china', "people's republic of china", 'peoples republic of china', 'prc', 'cn', 'chn'),
    ('taiwan', 'republic of china', 'roc', 'tw', 'twn'),
    ('united arab emirates', 'uae', 'ae', 'are'),
)

_COUNTRY_CANONICAL: Dict[str, str] = {
    alias: group[0] for group in COUNTRY_ALIASES for alias in group
}


class InvalidDateError(ValueError):
    """Raised when a date of birth cannot be parsed"""
    pass


class DobConfidence(str, Enum):
    """Strength of a date-of-birth match"""
    EXACT = "exact"
    PARTIAL = "partial"
    YEAR_ONLY = "year_only"
    NONE = "none"


@dataclass(frozen=True)
class PartialDate:
    """A date where month and day may be unknown"""
    year: int
    month: Optional[int] = None
    day: Optional[int] = None


def parse_partial_date(value: Optional[str]) -> Optional[PartialDate]:
    """Parse an ISO 8601 date that may omit day or month

    Returns:
        PartialDate, or None for a blank value

    Raises:
        InvalidDateError: If the value is not a real date
    """
    if value is None or not str(value).strip():
        return None

    text = str(value).strip()
    match = DOB_PATTERN.match(text)
    if not match:
        raise InvalidDateError(f"Unrecognized date format: {text!r} (expected YYYY, YYYY-MM or YYYY-MM-DD)")

    year = int(match.group(1))
    month = int(match.group(2)) if match.group(2) else None
    day = int(match.group(3)) if match.group(3) else None

    try:
        # Validates ranges, including leap days
        date(year, month or 1, day or 1)
    except ValueError as e:
        raise InvalidDateError(f"Invalid date {text!r}: {e}")

    return PartialDate(year, month, day)


@dataclass(frozen=True)
class DobMatch:
    matches: bool
    confidence: DobConfidence

    def to_dict(self) -> Dict[str, Any]:
        return {'matches': self.matches, 'confidence': self.confidence.value}


NO_DOB_MATCH = DobMatch(False, DobConfidence.NONE)


def compare_dob(left: Optional[PartialDate], right: Optional[PartialDate]) -> DobMatch:
    """Grade two dates of birth

    exact: day, month and year all equal.
    partial: year equal and one of month/day equal (day unknown on a side
    counts as partial when the months agree).
    year_only: only the year is known to agree.
    Only exact and partial count as a match.
    """
    if left is None or right is None or left.year != right.year:
        return NO_DOB_MATCH

    if left.month is None or right.month is None:
        return DobMatch(False, DobConfidence.YEAR_ONLY)

    months_equal = left.month == right.month

    if left.day is None or right.day is None:
        if months_equal:
            return DobMatch(True, DobConfidence.PARTIAL)
        return DobMatch(False, DobConfidence.YEAR_ONLY)

    days_equal = left.day == right.day
    if months_equal and days_equal:
        return DobMatch(True, DobConfidence.EXACT)
    if months_equal or days_equal:
        return DobMatch(True, DobConfidence.PARTIAL)
    return DobMatch(False, DobConfidence.YEAR_ONLY)


def canonical_country(value: Optional[str]) -> str:
    """Case-insensitive canonical key for a country name or code"""
    if not value:
        return ''
    key = ' '.join(str(value).casefold().replace('.', '').split())
    return _COUNTRY_CANONICAL.get(key, key)


def country_matches(country: Optional[str], countries: FrozenSet[str]) -> bool:
    """True when the record's country is among the entry's (canonical) countries"""
    key = canonical_country(country)
    return bool(key) and key in countries


@dataclass(frozen=True)
class MatchDetails:
    """Per-factor evidence behind a match score"""
    name_score: float
    dob_match: DobMatch = NO_DOB_MATCH
    country_match: bool = False
    alias_matched: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nameScore': round(self.name_score, 6),
            'dobMatch': self.dob_match.to_dict(),
            'countryMatch': self.country_match,
            'aliasMatched': self.alias_matched,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MatchDetails':
        """Rebuild details from their to_dict form"""
        dob = data.get('dobMatch') or {}
        return cls(
            name_score=float(data.get('nameScore', 0.0)),
            dob_match=DobMatch(bool(dob.get('matches', False)),
                               DobConfidence(dob.get('confidence', DobConfidence.NONE.value))),
            country_match=bool(data.get('countryMatch', False)),
            alias_matched=data.get('aliasMatched'),
        )


@dataclass(frozen=True)
class PreparedEntry:
    """A watchlist entry with its comparison data computed once per snapshot"""
    entry: WatchlistEntry
    primary: NormalizedName
    aliases: Tuple[Tuple[str, NormalizedName], ...]
    dob: Optional[PartialDate]
    countries: FrozenSet[str]


def prepare_entry(entry: WatchlistEntry) -> PreparedEntry:
    """Normalize names, parse DOB and canonicalize countries of an entry

    Unusable aliases and DOBs are dropped with a warning; the entry itself
    must have a usable primary name.
    """
    entity_type = entry.type.value
    primary = normalize_for_type(entry.name, entity_type)

    aliases = []
    for alias in entry.aliases:
        try:
            aliases.append((alias, normalize_for_type(alias, entity_type)))
        except ValueError:
            logger.warning("Ignoring unusable alias for entry %s: %s",
                           entry.id, sanitize_for_logging(alias))

    try:
        dob = parse_partial_date(entry.dob)
    except InvalidDateError:
        logger.warning("Ignoring unparseable DOB for entry %s: %s",
                       entry.id, sanitize_for_logging(entry.dob or ''))
        dob = None

    countries = frozenset(k for k in (canonical_country(c) for c in entry.countries) if k)
    return PreparedEntry(entry=entry, primary=primary, aliases=tuple(aliases), dob=dob, countries=countries)


@dataclass(frozen=True)
class PreparedRecord:
    """A party record ready for scoring"""
    record_id: str
    entity_type: str
    name: NormalizedName
    aliases: Tuple[Tuple[str, NormalizedName], ...] = ()
    dob: Optional[PartialDate] = None
    country: Optional[str] = None


def comparison_type(record_type: str, entry_type: str) -> str:
    """Entity type whose comparison forms apply to a record and entry pair

    Mixed pairs use the individual forms, which include the sorted one.
    """
    return record_type if record_type == entry_type else 'individual'


@dataclass(frozen=True)
class ScoredCandidate:
    entry: WatchlistEntry
    details: MatchDetails
    score: float


class MatchScorer:
    """Scores a prepared record against prepared watchlist entries"""

    def __init__(self, config: Optional[MatchingConfig] = None):
        self.config = config or MatchingConfig()

    def name_score(self, record: PreparedRecord, entry: PreparedEntry,
                   include_aliases: bool) -> Tuple[float, Optional[str]]:
        """Best name similarity and the alias that produced it (None for the primary name)

        Earlier comparisons win ties, so the primary name is reported
        whenever it does at least as well as any alias. Word order is
        ignored only when both sides are companies.
        """
        entity_type = comparison_type(record.entity_type, entry.entry.type.value)
        best = name_similarity(record.name, entry.primary, entity_type, self.config)
        best_alias: Optional[str] = None

        if include_aliases and best < 1.0:
            comparisons: List[Tuple[str, NormalizedName, NormalizedName]] = []
            comparisons.extend((raw, record.name, alias) for raw, alias in entry.aliases)
            comparisons.extend((raw, alias, entry.primary) for raw, alias in record.aliases)
            for raw, left, right in comparisons:
                score = name_similarity(left, right, entity_type, self.config)
                if score > best:
                    best, best_alias = score, raw
                    if best == 1.0:
                        break

        return best, best_alias

    def score(self, record: PreparedRecord, entry: PreparedEntry, include_aliases: bool = True,
              check_dob: bool = True, check_country: bool = True) -> MatchDetails:
        """Compute the per-factor match details for one candidate"""
        name_score, alias = self.name_score(record, entry, include_aliases)
        dob_match = compare_dob(record.dob, entry.dob) if check_dob else NO_DOB_MATCH
        country = country_matches(record.country, entry.countries) if check_country else False
        return MatchDetails(
            name_score=name_score,
            dob_match=dob_match,
            country_match=country,
            alias_matched=alias,
        )

    def aggregate(self, details: MatchDetails) -> float:
        """Combine match details into a single score in [0, 1]"""
        dob_boost = self.config.dob_boosts[details.dob_match.confidence.value]
        country_boost = 1.0 if details.country_match else 0.0
        multiplier = (1
                      + self.config.weights['dob'] * dob_boost
                      + self.config.weights['country'] * country_boost)
        return max(0.0, min(1.0, details.name_score * multiplier))

    def score_candidates(self, record: PreparedRecord, candidates: List[PreparedEntry],
                         include_aliases: bool = True, check_dob: bool = True,
                         check_country: bool = True) -> List[ScoredCandidate]:
        """Score every candidate, dropping those below the name floor"""
        scored = []
        for candidate in candidates:
            details = self.score(record, candidate, include_aliases, check_dob, check_country)
            if details.name_score < self.config.name_floor:
                continue
            scored.append(ScoredCandidate(candidate.entry, details, self.aggregate(details)))
        return scored
