"""
String similarity for normalized names.

Composite metric built on rapidfuzz:
    levenshtein * w_lev + jaro_winkler * w_jw + token_match * w_token
plus a bonus on the remaining headroom when both strings share a Soundex
code. Identical strings score exactly 1.0; any other pair stays below it.
"""

from typing import Dict, Optional, Sequence

from rapidfuzz.distance import JaroWinkler, Levenshtein

from config_manager import MatchingConfig
from name_normalizer import NormalizedName

# Highest score a pair of different strings can get
NEAR_MATCH_CAP = 0.999

_SOUNDEX_TABLE: Dict[str, str] = {}
for _letters, _digit in (('bfpv', '1'), ('cgjkqsxz', '2'), ('dt', '3'),
                         ('l', '4'), ('mn', '5'), ('r', '6')):
    for _ch in _letters:
        _SOUNDEX_TABLE[_ch] = _digit


def soundex(value: str) -> str:
    """Encode a string using the Soundex algorithm

    Only ASCII letters take part; returns '' when there are none.
    """
    s = ''.join(c for c in (value or '').lower() if 'a' <= c <= 'z')
    if not s:
        return ''
    coded = [s[0].upper()]
    prev = _SOUNDEX_TABLE.get(s[0], '0')
    for ch in s[1:]:
        code = _SOUNDEX_TABLE.get(ch, '0')
        if code != '0' and code != prev:
            coded.append(code)
            if len(coded) == 4:
                break
        # h and w do not separate letters with the same code
        if ch not in 'hw':
            prev = code
    return ''.join(coded).ljust(4, '0')


def token_similarity(a: str, b: str) -> float:
    return JaroWinkler.normalized_similarity(a, b)


def _greedy_token_match(left: Sequence[str], right: Sequence[str], cutoff: float) -> int:
    used = set()
    matched = 0
    for token in left:
        best_idx = None
        best_score = 0.0
        for idx, other in enumerate(right):
            if idx in used:
                continue
            score = token_similarity(token, other)
            if score >= cutoff and score > best_score:
                best_idx = idx
                best_score = score
        if best_idx is not None:
            used.add(best_idx)
            matched += 1
    return matched


def token_match(left: Sequence[str], right: Sequence[str], cutoff: float = 0.85) -> float:
    """Share of tokens that pair up one-to-one at Jaro-Winkler >= cutoff

    Greedy pairing is order dependent, so both directions are tried and
    the better one kept.
    """
    if not left or not right:
        return 0.0
    matched = max(
        _greedy_token_match(left, right, cutoff),
        _greedy_token_match(right, left, cutoff)
    )
    return matched / max(len(left), len(right))


def string_similarity(a: str, b: str, config: Optional[MatchingConfig] = None) -> float:
    """Composite similarity of two normalized strings, in [0, 1]"""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    config = config or MatchingConfig()
    weights = config.similarity_weights

    score = (
        Levenshtein.normalized_similarity(a, b) * weights['levenshtein']
        + JaroWinkler.normalized_similarity(a, b) * weights['jaro_winkler']
        + token_match(a.split(), b.split(), config.token_match_threshold) * weights['token']
    )

    score = max(0.0, min(1.0, score))
    code_a = soundex(a)
    if code_a and code_a == soundex(b):
        score = _with_bonus(score, config.phonetic_bonus)

    return min(score, NEAR_MATCH_CAP)


def _with_bonus(score: float, bonus: float) -> float:
    return score + bonus * (1.0 - score)


def name_similarity(left: NormalizedName, right: NormalizedName, entity_type: str,
                    config: Optional[MatchingConfig] = None) -> float:
    """Best similarity over the comparison forms of two normalized names

    Forms are compared pairwise by kind: original order against original
    order, sorted against sorted.
    """
    best = 0.0
    for form_a, form_b in zip(left.comparison_forms(entity_type), right.comparison_forms(entity_type)):
        best = max(best, string_similarity(form_a, form_b, config))
        if best == 1.0:
            break
    return best


def zero_overlap_ceiling(config: MatchingConfig) -> float:
    """Highest name similarity reachable when no token pair matches"""
    weights = config.similarity_weights
    base = min(1.0, weights['levenshtein'] + weights['jaro_winkler'])
    return min(_with_bonus(base, config.phonetic_bonus), NEAR_MATCH_CAP)
