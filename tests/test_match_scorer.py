"""
Tests for multi-factor match scoring.

Covers DOB parsing and confidence tiers, country canonicalization,
alias handling, score bounds and monotonicity.
"""

import sys
from dataclasses import replace
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import MatchingConfig
from match_scorer import (
    DobConfidence,
    InvalidDateError,
    MatchDetails,
    MatchScorer,
    PartialDate,
    PreparedRecord,
    canonical_country,
    comparison_type,
    compare_dob,
    country_matches,
    parse_partial_date,
    prepare_entry,
)
from name_normalizer import normalize_for_type
from watchlist import EntityType, ListType, WatchlistEntry


# ============================================
# FIXTURES
# ============================================


def make_entry(name="John Smith", entry_id="OFAC-1", entity_type=EntityType.INDIVIDUAL,
               dob="1965-03-15", countries=("US",), aliases=()):
    return WatchlistEntry(
        id=entry_id,
        name=name,
        type=entity_type,
        list_code="ofac",
        list_name="OFAC SDN",
        list_type=ListType.SANCTIONS,
        dob=dob,
        countries=tuple(countries),
        aliases=tuple(aliases),
    )


def make_record(name="John Smith", entity_type="individual", dob=None, country=None, aliases=()):
    return PreparedRecord(
        record_id="r1",
        entity_type=entity_type,
        name=normalize_for_type(name, entity_type),
        aliases=tuple((a, normalize_for_type(a, entity_type)) for a in aliases),
        dob=parse_partial_date(dob),
        country=country,
    )


@pytest.fixture
def scorer():
    return MatchScorer(MatchingConfig())


# ============================================
# DATE OF BIRTH
# ============================================


class TestParsePartialDate:
    """Tests for ISO 8601 partial date parsing."""

    def test_full_date(self):
        """YYYY-MM-DD parses all parts."""
        assert parse_partial_date("1965-03-15") == PartialDate(1965, 3, 15)

    def test_year_month(self):
        """YYYY-MM leaves the day unknown."""
        assert parse_partial_date("1971-08") == PartialDate(1971, 8, None)

    def test_year_only(self):
        """YYYY leaves month and day unknown."""
        assert parse_partial_date("1974") == PartialDate(1974)

    def test_time_part_ignored(self):
        """A trailing time component is accepted."""
        assert parse_partial_date("1965-03-15T00:00:00") == PartialDate(1965, 3, 15)

    def test_blank_is_none(self):
        """Blank and missing dates are absent, not errors."""
        assert parse_partial_date(None) is None
        assert parse_partial_date("  ") is None

    @pytest.mark.parametrize("value", ["not-a-date", "15/03/1965", "1965-13-01", "2023-02-29"])
    def test_invalid_dates_rejected(self, value):
        """Unrecognized formats and impossible dates raise InvalidDateError."""
        with pytest.raises(InvalidDateError):
            parse_partial_date(value)


class TestCompareDob:
    """Tests for DOB confidence tiers."""

    def test_exact(self):
        """Day, month and year equal is exact and a match."""
        result = compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 3, 15))
        assert result.confidence == DobConfidence.EXACT
        assert result.matches is True

    def test_partial_day_differs(self):
        """Same year and month, different day is partial."""
        result = compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 3, 16))
        assert result.confidence == DobConfidence.PARTIAL
        assert result.matches is True

    def test_partial_month_differs(self):
        """Same year and day, different month is partial."""
        result = compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 4, 15))
        assert result.confidence == DobConfidence.PARTIAL

    def test_partial_day_unknown(self):
        """Unknown day with agreeing months is partial."""
        result = compare_dob(PartialDate(1971, 8, 2), PartialDate(1971, 8))
        assert result.confidence == DobConfidence.PARTIAL

    def test_year_only_is_not_a_match(self):
        """Only the year agreeing is year_only and not a match."""
        result = compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 7, 4))
        assert result.confidence == DobConfidence.YEAR_ONLY
        assert result.matches is False

    def test_year_only_when_month_unknown(self):
        """A year-only date can at most agree on the year."""
        result = compare_dob(PartialDate(1974, 5, 1), PartialDate(1974))
        assert result.confidence == DobConfidence.YEAR_ONLY

    def test_different_year(self):
        """Different years give none."""
        result = compare_dob(PartialDate(1965, 3, 15), PartialDate(1966, 3, 15))
        assert result.confidence == DobConfidence.NONE
        assert result.matches is False

    def test_missing_side(self):
        """A missing DOB on either side gives none."""
        assert compare_dob(None, PartialDate(1965)).confidence == DobConfidence.NONE
        assert compare_dob(PartialDate(1965), None).confidence == DobConfidence.NONE


# ============================================
# COUNTRY
# ============================================


class TestCountry:
    """Tests for country canonicalization."""

    def test_codes_and_names_agree(self):
        """ISO codes and country names share a canonical key."""
        assert canonical_country("US") == canonical_country("United States") == canonical_country("u.s.a.")
        assert canonical_country("GB") == canonical_country("United Kingdom")

    def test_unknown_country_casefolded(self):
        """Countries outside the alias table compare case-insensitively."""
        assert canonical_country("Egypt") == canonical_country("EGYPT")

    def test_country_matches(self):
        """Record country found in the entry set."""
        countries = frozenset({canonical_country("Russian Federation")})
        assert country_matches("RU", countries) is True
        assert country_matches("Belarus", countries) is False

    def test_missing_country_is_false(self):
        """No record country is a non-match, not an error."""
        assert country_matches(None, frozenset({"united states"})) is False


# ============================================
# SCORING
# ============================================


class TestMatchScorer:
    """Tests for MatchScorer."""

    def test_scenario_a(self, scorer):
        """Identical name, exact DOB and country clamp to 1.0."""
        record = make_record(dob="1965-03-15", country="US")
        entry = prepare_entry(make_entry())
        details = scorer.score(record, entry)
        assert details.name_score == 1.0
        assert details.dob_match.confidence == DobConfidence.EXACT
        assert details.country_match is True
        assert details.alias_matched is None
        assert scorer.aggregate(details) == 1.0

    def test_spelling_variant_below_one(self, scorer):
        """A misspelled name scores below 1.0."""
        details = scorer.score(make_record("Jon Smyth"), prepare_entry(make_entry()))
        assert 0.0 < details.name_score < 1.0

    def test_alias_match_reported(self, scorer):
        """An entry alias that beats the primary name is reported."""
        entry = prepare_entry(make_entry(name="Viktor Petrovich Ivanov", aliases=("Victor Ivanov",)))
        details = scorer.score(make_record("Victor Ivanov"), entry)
        assert details.name_score == 1.0
        assert details.alias_matched == "Victor Ivanov"

    def test_aliases_ignored_when_disabled(self, scorer):
        """include_aliases=False compares primary names only."""
        entry = prepare_entry(make_entry(name="Viktor Petrovich Ivanov", aliases=("Victor Ivanov",)))
        details = scorer.score(make_record("Victor Ivanov"), entry, include_aliases=False)
        assert details.alias_matched is None
        assert details.name_score < 1.0

    def test_record_alias_compared_to_primary(self, scorer):
        """A record alias can drive the name match."""
        record = make_record("J. Doe", aliases=("John Smith",))
        details = scorer.score(record, prepare_entry(make_entry()))
        assert details.name_score == 1.0
        assert details.alias_matched == "John Smith"

    def test_untyped_record_against_company_entry(self, scorer):
        """An individual record is scored against a company entry."""
        entry = prepare_entry(make_entry(name="Acme Trading LLC", entity_type=EntityType.COMPANY))
        assert scorer.score(make_record("Acme Trading LLC"), entry).name_score == 1.0
        assert scorer.score(make_record("Trading Acme LLC"), entry).name_score == 1.0

    def test_comparison_type(self):
        """Company forms apply only when both sides are companies."""
        assert comparison_type("company", "company") == "company"
        assert comparison_type("individual", "company") == "individual"
        assert comparison_type("company", "individual") == "individual"

    def test_dob_and_country_skipped_when_disabled(self, scorer):
        """check_dob and check_country off leave those factors empty."""
        record = make_record(dob="1965-03-15", country="US")
        details = scorer.score(record, prepare_entry(make_entry()), check_dob=False, check_country=False)
        assert details.dob_match.confidence == DobConfidence.NONE
        assert details.country_match is False

    def test_monotone_in_dob(self, scorer):
        """An exact DOB never lowers the score."""
        base = MatchDetails(name_score=0.7)
        exact = replace(base, dob_match=compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 3, 15)))
        assert scorer.aggregate(exact) >= scorer.aggregate(base)

    def test_monotone_in_country(self, scorer):
        """A country match never lowers the score."""
        base = MatchDetails(name_score=0.7)
        assert scorer.aggregate(replace(base, country_match=True)) >= scorer.aggregate(base)

    def test_monotone_in_name(self, scorer):
        """A higher name score never lowers the aggregate."""
        assert scorer.aggregate(MatchDetails(name_score=0.8)) >= scorer.aggregate(MatchDetails(name_score=0.6))

    def test_aggregate_formula(self, scorer):
        """Reference weighting: name * (1 + 0.15*dob + 0.10*country)."""
        details = MatchDetails(
            name_score=0.6,
            dob_match=compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 3, 16)),
            country_match=True,
        )
        assert scorer.aggregate(details) == pytest.approx(0.6 * (1 + 0.15 * 0.5 + 0.10))

    def test_name_floor_drops_candidates(self, scorer):
        """Candidates below the name floor are never retained."""
        entries = [prepare_entry(make_entry(name="Zygmunt Qwerty", countries=("US",)))]
        record = make_record("Ann Lee", dob="1965-03-15", country="US")
        assert scorer.score_candidates(record, entries) == []

    def test_bounds(self, scorer):
        """Scores stay within [0, 1]."""
        entries = [prepare_entry(make_entry(name=n, entry_id=n)) for n in
                   ("John Smith", "Jon Smyth", "Joan Smithers", "Smith John")]
        for candidate in scorer.score_candidates(make_record(dob="1965-03-15", country="US"), entries):
            assert 0.0 <= candidate.details.name_score <= 1.0
            assert 0.0 <= candidate.score <= 1.0


class TestPrepareEntry:
    """Tests for entry preparation."""

    def test_unparseable_entry_dob_dropped(self):
        """An entry DOB that does not parse is treated as absent."""
        assert prepare_entry(make_entry(dob="circa 1960")).dob is None

    def test_countries_canonicalized(self):
        """Entry countries are stored as canonical keys."""
        assert prepare_entry(make_entry(countries=("USA", "GB"))).countries == frozenset(
            {"united states", "united kingdom"})


class TestMatchDetails:
    """Tests for MatchDetails serialization."""

    def test_from_dict_restores_details(self):
        """from_dict reads back what to_dict wrote."""
        details = MatchDetails(
            name_score=0.875,
            dob_match=compare_dob(PartialDate(1965, 3, 15), PartialDate(1965, 3)),
            country_match=True,
            alias_matched="Johnny Smith",
        )
        assert MatchDetails.from_dict(details.to_dict()) == details
