"""
Name normalization for watchlist screening.

Turns free-text names (and aliases) into a comparable, locale-independent
form: case-folded, accent-free, punctuation collapsed, tokenized.
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Tuple

from validation import InputValidationError

# Honorifics and generational suffixes dropped from personal names
HONORIFICS = frozenset({
    'mr', 'mrs', 'ms', 'miss', 'dr', 'prof', 'sir', 'dame', 'lord', 'lady',
    'jr', 'sr', 'junior', 'senior', 'ii', 'iii', 'iv', 'phd', 'md', 'esq',
})

_SEPARATORS = re.compile(r'[\W_]+', re.UNICODE)


@dataclass(frozen=True)
class NormalizedName:
    """Canonical form of a name

    Both the original token order and the sorted token order are kept so
    the scorer can try either.
    """
    raw: str
    tokens: Tuple[str, ...]

    @property
    def text(self) -> str:
        return ' '.join(self.tokens)

    @property
    def sorted_text(self) -> str:
        return ' '.join(sorted(self.tokens))

    def comparison_forms(self, entity_type: str) -> Tuple[str, ...]:
        """Strings to compare for the given entity type

        Companies compare word-order-insensitively; individuals keep
        the original order as well as the sorted one.
        """
        if entity_type == 'company':
            return (self.sorted_text,)
        return (self.text, self.sorted_text)


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize('NFKD', text)
    return ''.join(c for c in decomposed if unicodedata.category(c) != 'Mn')


def normalize(raw_name: str, strip_honorifics: bool = True) -> NormalizedName:
    """Normalize a raw name

    Args:
        raw_name: Name as supplied by the caller or the watchlist
        strip_honorifics: Drop titles such as "Dr" or "Jr" (personal names only)

    Returns:
        NormalizedName

    Raises:
        InputValidationError: If nothing comparable remains
    """
    text = strip_diacritics((raw_name or '').casefold())
    text = _SEPARATORS.sub(' ', text).strip()
    tokens = tuple(text.split())

    if strip_honorifics:
        kept = tuple(t for t in tokens if t not in HONORIFICS)
        # A name made only of titles ("Lord") keeps them
        if kept:
            tokens = kept

    if not tokens:
        raise InputValidationError(
            "Name is empty after normalization",
            field="name",
            code="EMPTY_NAME",
            suggestion="Provide a name containing letters or digits"
        )

    return NormalizedName(raw=raw_name, tokens=tokens)


def normalize_for_type(raw_name: str, entity_type: str) -> NormalizedName:
    """Normalize a name according to the entity type it belongs to"""
    return normalize(raw_name, strip_honorifics=(entity_type != 'company'))
