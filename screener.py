"""
Watchlist Batch Screener
Runs party records through normalization, candidate retrieval, scoring and
classification, and assembles a deterministic batch result.

Features:
- Parallel per-record screening with input order preserved
- Per-record fault isolation (a bad record never fails the batch)
- Summary computed from the results themselves
- Options validated up front; invalid options reject the whole batch
- Configurable thresholds and weights via config.yaml

Usage:
    python screener.py input.csv --data-dir watchlist_data --threshold 0.8
"""

import sys
import json
import logging
import argparse
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config_manager import get_config, ConfigManager, ConfigurationError, ListInfo
from log_utils import sanitize_for_logging, setup_logging
from validation import InputValidationError
from name_normalizer import normalize_for_type
from match_scorer import InvalidDateError, MatchScorer, PreparedRecord, parse_partial_date
from candidate_retriever import CandidateRetriever
from classifier import MatchStatus, RecordStatus, ScreeningMatch, classify, record_status
from record_ingestor import BatchFormatError, PartyRecord, parse_csv_file
from watchlist import WatchlistError, WatchlistSnapshot, load_snapshot

logger = logging.getLogger(__name__)


class OptionsError(InputValidationError):
    """Raised when screening options are invalid; nothing is processed"""
    pass


_TRUE_FLAGS = ('true', '1', 'yes', 'on')
_FALSE_FLAGS = ('false', '0', 'no', 'off')


def _parse_flag(value: Any, name: str) -> bool:
    """Boolean option from JSON, query string or CLI values"""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_FLAGS:
            return True
        if text in _FALSE_FLAGS:
            return False
    raise OptionsError(
        f"{name} must be true or false, got {value!r}",
        field=name,
        code="INVALID_FLAG",
        suggestion="Use true or false"
    )


@dataclass(frozen=True)
class ScreeningOptions:
    """Per-batch screening options"""
    threshold: float = 0.7
    lists: Tuple[str, ...] = ('ofac', 'eu', 'uk', 'un')
    include_aliases: bool = True
    check_dob: bool = True
    check_country: bool = True

    @classmethod
    def from_config(cls, config: Optional[ConfigManager] = None) -> 'ScreeningOptions':
        config = config or get_config()
        return cls(
            threshold=config.matching.default_threshold,
            lists=tuple(config.lists.default_lists),
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]],
                  config: Optional[ConfigManager] = None) -> 'ScreeningOptions':
        """Build options from a request dict (camelCase or snake_case keys)

        Missing keys fall back to configured defaults.
        """
        base = cls.from_config(config)
        data = data or {}

        def pick(camel: str, snake: str, default: Any) -> bool:
            if camel in data:
                return _parse_flag(data[camel], camel)
            if snake in data:
                return _parse_flag(data[snake], camel)
            return default

        threshold = data.get('threshold', base.threshold)
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            try:
                threshold = float(threshold)
            except (TypeError, ValueError):
                raise OptionsError(
                    f"threshold must be a number, got {threshold!r}",
                    field="threshold",
                    code="INVALID_THRESHOLD",
                    suggestion="Use a number between 0 and 1"
                )

        lists = data.get('lists', base.lists)
        if isinstance(lists, str):
            lists = [part for part in lists.split(',')]

        return cls(
            threshold=float(threshold),
            lists=tuple(str(code).strip().lower() for code in lists if str(code).strip()),
            include_aliases=pick('includeAliases', 'include_aliases', base.include_aliases),
            check_dob=pick('checkDob', 'check_dob', base.check_dob),
            check_country=pick('checkCountry', 'check_country', base.check_country),
        )

    def validate(self, catalogue: Dict[str, ListInfo]) -> None:
        """Reject invalid options

        Raises:
            OptionsError: On a threshold outside [0, 1], no lists, or unknown lists
        """
        if not 0.0 <= self.threshold <= 1.0:
            raise OptionsError(
                f"threshold must be between 0 and 1, got {self.threshold}",
                field="threshold",
                code="INVALID_THRESHOLD",
                suggestion="Use a value such as 0.7"
            )
        if not self.lists:
            raise OptionsError(
                "At least one list must be selected",
                field="lists",
                code="EMPTY_LIST_SELECTION",
                suggestion=f"Choose from: {', '.join(sorted(catalogue))}"
            )
        unknown = sorted(set(self.lists) - set(catalogue))
        if unknown:
            raise OptionsError(
                f"Unknown lists: {unknown}",
                field="lists",
                code="UNKNOWN_LIST",
                suggestion=f"Choose from: {', '.join(sorted(catalogue))}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'threshold': self.threshold,
            'lists': list(self.lists),
            'includeAliases': self.include_aliases,
            'checkDob': self.check_dob,
            'checkCountry': self.check_country,
        }


@dataclass(frozen=True)
class RecordDiagnostic:
    """A per-record problem that degraded, but did not stop, screening"""
    code: str
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {'code': self.code, 'field': self.field, 'message': self.message}


@dataclass
class RecordResult:
    """Screening outcome for one input record"""
    record_id: str
    record_name: str
    matches: List[ScreeningMatch] = field(default_factory=list)
    diagnostics: List[RecordDiagnostic] = field(default_factory=list)

    @property
    def status(self) -> RecordStatus:
        return record_status(self.matches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recordId': self.record_id,
            'recordName': self.record_name,
            'status': self.status.value,
            'matches': [m.to_dict() for m in self.matches],
            'diagnostics': [d.to_dict() for d in self.diagnostics],
        }


@dataclass(frozen=True)
class BatchSummary:
    total: int
    clear: int
    potential_matches: int
    confirmed_matches: int
    total_matches: int

    @classmethod
    def from_results(cls, results: Sequence[RecordResult]) -> 'BatchSummary':
        return cls(
            total=len(results),
            clear=sum(1 for r in results if r.status == RecordStatus.CLEAR),
            potential_matches=sum(
                1 for r in results if any(m.status == MatchStatus.PENDING_REVIEW for m in r.matches)
            ),
            confirmed_matches=sum(
                1 for r in results if any(m.status == MatchStatus.CONFIRMED_MATCH for m in r.matches)
            ),
            total_matches=sum(len(r.matches) for r in results),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            'total': self.total,
            'clear': self.clear,
            'potentialMatches': self.potential_matches,
            'confirmedMatches': self.confirmed_matches,
            'totalMatches': self.total_matches,
        }


@dataclass
class BatchScreeningResult:
    """Per-record results in input order; the summary is derived from them"""
    results: List[RecordResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def summary(self) -> BatchSummary:
        return BatchSummary.from_results(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary.to_dict(),
            'results': [r.to_dict() for r in self.results],
            'warnings': list(self.warnings),
        }


class WatchlistScreener:
    """Screens party records against a fixed watchlist snapshot"""

    def __init__(self, snapshot: WatchlistSnapshot, config: Optional[ConfigManager] = None):
        """Initialize screener

        Args:
            snapshot: Watchlist snapshot; never modified while screening
            config: Configuration manager instance
        """
        self.config = config or get_config()
        self.snapshot = snapshot
        self.scorer = MatchScorer(self.config.matching)
        self.retriever = CandidateRetriever(snapshot, self.config.matching, self.config.retrieval)

        logger.info(f"🔧 Screener initialized:")
        logger.info(f"   - Entries loaded: {len(snapshot)}")
        logger.info(f"   - Lists: {', '.join(snapshot.list_codes) or 'none'}")
        logger.info(f"   - Default threshold: {self.config.matching.default_threshold}")

    def default_options(self) -> ScreeningOptions:
        return ScreeningOptions.from_config(self.config)

    def available_lists(self) -> List[Dict[str, Any]]:
        """Catalogued lists with the number of loaded entries"""
        counts = self.snapshot.counts()
        return [
            {
                'code': code,
                'name': info.name,
                'listType': info.list_type,
                'entries': counts.get(code, 0),
            }
            for code, info in sorted(self.config.lists.catalogue.items())
        ]

    def _prepare(self, record: PartyRecord, options: ScreeningOptions,
                 diagnostics: List[RecordDiagnostic]) -> Optional[PreparedRecord]:
        """Normalize a record, degrading faulty optional fields to absent"""
        for error in record.input_errors:
            code = 'INVALID_NAME' if error.field == 'name' else 'INVALID_ALIAS'
            diagnostics.append(RecordDiagnostic(code, error.field, f"{error} ({error.code})"))
        if any(error.field == 'name' for error in record.input_errors):
            return None

        try:
            name = normalize_for_type(record.name, record.type)
        except InputValidationError as e:
            diagnostics.append(RecordDiagnostic('UNUSABLE_NAME', 'name', str(e)))
            return None

        aliases = []
        if options.include_aliases:
            for alias in record.aliases:
                try:
                    aliases.append((alias, normalize_for_type(alias, record.type)))
                except InputValidationError as e:
                    diagnostics.append(RecordDiagnostic('UNUSABLE_ALIAS', 'aliases', str(e)))

        dob = None
        if options.check_dob:
            try:
                dob = parse_partial_date(record.dob)
            except InvalidDateError as e:
                logger.warning("Ignoring invalid DOB for record %s: %s",
                               sanitize_for_logging(record.id), sanitize_for_logging(str(e)))
                diagnostics.append(RecordDiagnostic('INVALID_DOB', 'dob', str(e)))

        return PreparedRecord(
            record_id=record.id,
            entity_type=record.type,
            name=name,
            aliases=tuple(aliases),
            dob=dob,
            country=record.country if options.check_country else None,
        )

    def screen_record(self, record: PartyRecord, options: ScreeningOptions) -> RecordResult:
        """Screen one record; faults are recorded as diagnostics, never raised"""
        diagnostics: List[RecordDiagnostic] = []
        matches: List[ScreeningMatch] = []
        try:
            prepared = self._prepare(record, options, diagnostics)
            if prepared is not None:
                candidates = self.retriever.retrieve(
                    prepared, options.lists, options.include_aliases, options.threshold
                )
                scored = self.scorer.score_candidates(
                    prepared, candidates,
                    include_aliases=options.include_aliases,
                    check_dob=options.check_dob,
                    check_country=options.check_country
                )
                matches = classify(scored, options.threshold, record.id)
        except Exception as e:
            logger.exception("Screening failed for record %s", sanitize_for_logging(record.id))
            diagnostics.append(RecordDiagnostic('SCREENING_ERROR', 'record', type(e).__name__))
            matches = []

        return RecordResult(
            record_id=record.id,
            record_name=record.name,
            matches=matches,
            diagnostics=diagnostics,
        )

    def _list_warnings(self, options: ScreeningOptions) -> List[str]:
        catalogue = self.config.lists.catalogue
        return sorted(
            f"List '{code}' ({catalogue[code].name}) has no entries loaded"
            for code in set(options.lists)
            if code not in self.snapshot
        )

    def run_batch(self, records: Sequence[PartyRecord],
                  options: Optional[ScreeningOptions] = None) -> BatchScreeningResult:
        """Screen a batch of records

        Args:
            records: Party records with unique ids
            options: Screening options (configured defaults when None)

        Returns:
            BatchScreeningResult with one result per record, in input order

        Raises:
            OptionsError: If options are invalid (nothing is processed)
            BatchFormatError: If the batch is empty or has duplicate ids
        """
        options = options or self.default_options()
        options.validate(self.config.lists.catalogue)

        if not records:
            raise BatchFormatError(
                "Batch contains no records",
                field="records",
                code="NO_VALID_RECORDS",
                suggestion="Submit at least one record"
            )
        ids = [r.id for r in records]
        if len(set(ids)) != len(ids):
            raise BatchFormatError(
                "Record ids must be unique within a batch",
                field="id",
                code="DUPLICATE_RECORD_ID",
                suggestion="Give every record in the batch a unique id"
            )

        perf = self.config.performance
        if perf.concurrent_searches and perf.max_threads > 1 and len(records) > 1:
            with ThreadPoolExecutor(max_workers=min(perf.max_threads, len(records))) as executor:
                # map() yields in submission order
                results = list(executor.map(lambda r: self.screen_record(r, options), records))
        else:
            results = [self.screen_record(r, options) for r in records]

        result = BatchScreeningResult(results=results, warnings=self._list_warnings(options))
        summary = result.summary
        logger.info(
            "Batch screened: total=%d clear=%d potential=%d matches=%d",
            summary.total, summary.clear, summary.potential_matches, summary.total_matches
        )
        return result

    def screen_name(self, name: str, entity_type: str = 'individual',
                    options: Optional[ScreeningOptions] = None) -> RecordResult:
        """Quick check of a single name"""
        options = options or self.default_options()
        options.validate(self.config.lists.catalogue)
        record = PartyRecord(id='name-check', name=name, type=entity_type)
        return self.screen_record(record, options)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Screen a CSV batch against watchlists")
    parser.add_argument('csv_file', help="CSV with a name column (type, dob, country optional)")
    parser.add_argument('--data-dir', help="Directory with watchlist JSON files")
    parser.add_argument('--config', help="Path to config.yaml")
    parser.add_argument('--threshold', type=float, help="Match threshold between 0 and 1")
    parser.add_argument('--lists', help="Comma-separated list codes, e.g. ofac,un")
    parser.add_argument('--no-aliases', action='store_true', help="Ignore aliases")
    parser.add_argument('--no-dob', action='store_true', help="Ignore dates of birth")
    parser.add_argument('--no-country', action='store_true', help="Ignore countries")
    parser.add_argument('--output', help="Write the JSON result to this file")
    args = parser.parse_args(argv)

    try:
        config = get_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging(config.logging)

    try:
        snapshot = load_snapshot(args.data_dir, config)
        records = parse_csv_file(args.csv_file, config)

        options = ScreeningOptions.from_config(config)
        if args.threshold is not None:
            options = replace(options, threshold=args.threshold)
        if args.lists:
            options = replace(options, lists=tuple(
                code.strip().lower() for code in args.lists.split(',') if code.strip()))
        options = replace(
            options,
            include_aliases=not args.no_aliases,
            check_dob=not args.no_dob,
            check_country=not args.no_country,
        )

        screener = WatchlistScreener(snapshot, config)
        result = screener.run_batch(records, options)
    except (InputValidationError, WatchlistError) as e:
        logger.error("Screening aborted: %s", sanitize_for_logging(str(e)))
        return 2

    output = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(output)
        logger.info(f"✓ Result saved: {args.output}")
    else:
        print(output)

    summary = result.summary
    logger.info(f"Total screened: {summary.total}")
    logger.info(f"Potential matches: {summary.potential_matches}")
    logger.info(f"Clear: {summary.clear}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
