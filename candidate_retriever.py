"""
Candidate retrieval (blocking) for watchlist screening.

Narrows the entries each record is fully scored against. Entries are
partitioned by list; within a partition a token vocabulary maps every
normalized token to the entries that contain it. Entity types are not
partitioned: a record is compared with individuals and companies alike.

Blocking is lossless: when the threshold is above the best score a pair
with no matching token could reach, only entries sharing a token pair
at or above the token-match cutoff can qualify, and exactly those are
retrieved. Otherwise retrieval falls back to every entry of the partition.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler

from config_manager import MatchingConfig, RetrievalConfig
from log_utils import sanitize_for_logging
from match_scorer import PreparedEntry, PreparedRecord, prepare_entry
from similarity import token_similarity, zero_overlap_ceiling
from watchlist import WatchlistSnapshot

logger = logging.getLogger(__name__)

# rapidfuzz applies its own cutoff comparison; prefilter slightly below it
# and confirm every hit with the scorer's token similarity
_PREFILTER_SLACK = 1e-6


@dataclass
class _Partition:
    """Entries of one list"""
    entries: List[PreparedEntry] = field(default_factory=list)
    primary_tokens: Dict[str, Set[int]] = field(default_factory=lambda: defaultdict(set))
    alias_tokens: Dict[str, Set[int]] = field(default_factory=lambda: defaultdict(set))

    def add(self, prepared: PreparedEntry) -> None:
        position = len(self.entries)
        self.entries.append(prepared)
        for token in prepared.primary.tokens:
            self.primary_tokens[token].add(position)
        for _, alias in prepared.aliases:
            for token in alias.tokens:
                self.alias_tokens[token].add(position)


class CandidateRetriever:
    """Shortlists watchlist entries for a record

    Built once per snapshot; read-only afterwards and safe to share
    between worker threads.
    """

    def __init__(self, snapshot: WatchlistSnapshot,
                 matching: Optional[MatchingConfig] = None,
                 retrieval: Optional[RetrievalConfig] = None):
        self.matching = matching or MatchingConfig()
        self.retrieval = retrieval or RetrievalConfig()
        self._partitions: Dict[str, _Partition] = {}
        self.skipped_entries = 0

        for code in snapshot.list_codes:
            for entry in snapshot.entries_for([code]):
                try:
                    prepared = prepare_entry(entry)
                except ValueError:
                    self.skipped_entries += 1
                    logger.warning("Skipping entry %s/%s: name unusable after normalization",
                                   code, sanitize_for_logging(entry.id))
                    continue
                self._partitions.setdefault(code, _Partition()).add(prepared)

        # Frozen vocabularies for rapidfuzz lookups
        self._primary_vocab: Dict[str, List[str]] = {
            code: sorted(p.primary_tokens) for code, p in self._partitions.items()
        }
        self._alias_vocab: Dict[str, List[str]] = {
            code: sorted(p.alias_tokens) for code, p in self._partitions.items()
        }

    def partition_size(self, list_codes: Iterable[str]) -> int:
        return sum(
            len(self._partitions[code].entries)
            for code in set(list_codes)
            if code in self._partitions
        )

    def blocking_is_lossless(self, threshold: Optional[float]) -> bool:
        """Whether a record needs a matching token pair to reach threshold"""
        if threshold is None:
            return False
        ceiling = zero_overlap_ceiling(self.matching) * self.matching.max_boost_multiplier
        return threshold > ceiling

    def uses_blocking(self, list_codes: Iterable[str], threshold: Optional[float]) -> bool:
        list_codes = list(list_codes)
        return (
            self.retrieval.blocking_enabled
            and self.blocking_is_lossless(threshold)
            and self.partition_size(list_codes) > self.retrieval.exhaustive_limit
        )

    def retrieve(self, record: PreparedRecord, list_codes: Iterable[str], include_aliases: bool,
                 threshold: Optional[float] = None) -> List[PreparedEntry]:
        """Entries worth scoring for a record

        Args:
            record: Prepared party record
            list_codes: Selected list codes
            include_aliases: Whether aliases take part in matching
            threshold: Score threshold; None disables blocking

        Returns:
            Candidates of every entity type, in list then load order
        """
        list_codes = sorted(set(list_codes))

        if not self.uses_blocking(list_codes, threshold):
            candidates: List[PreparedEntry] = []
            for code in list_codes:
                partition = self._partitions.get(code)
                if partition:
                    candidates.extend(partition.entries)
            return candidates

        query_tokens = set(record.name.tokens)
        if include_aliases:
            for _, alias in record.aliases:
                query_tokens.update(alias.tokens)

        candidates = []
        for code in list_codes:
            partition = self._partitions.get(code)
            if not partition:
                continue
            positions = self._lookup(query_tokens, self._primary_vocab[code], partition.primary_tokens)
            if include_aliases:
                positions |= self._lookup(query_tokens, self._alias_vocab[code], partition.alias_tokens)
            candidates.extend(partition.entries[i] for i in sorted(positions))
        return candidates

    def _lookup(self, tokens: Set[str], vocabulary: List[str], postings: Dict[str, Set[int]]) -> Set[int]:
        positions: Set[int] = set()
        if not vocabulary:
            return positions
        cutoff = self.matching.token_match_threshold
        for token in sorted(tokens):
            hits = process.extract(
                token,
                vocabulary,
                scorer=JaroWinkler.normalized_similarity,
                score_cutoff=max(0.0, cutoff - _PREFILTER_SLACK),
                limit=None
            )
            for choice, _, _ in hits:
                # Same comparison, both directions, as the scorer's token matching
                if (token_similarity(token, choice) >= cutoff
                        or token_similarity(choice, token) >= cutoff):
                    positions |= postings[choice]
        return positions
