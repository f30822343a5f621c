"""
Watchlist reference data.

Entries are immutable and a snapshot never changes once built; screening
against newer data means building a new snapshot.

Snapshot files are JSON documents, one per list:

    {
      "list_code": "ofac",
      "list_name": "OFAC SDN",
      "list_type": "sanctions",
      "entries": [
        {"id": "OFAC-1", "name": "...", "type": "individual",
         "dob": "1965-03-15", "countries": ["US"], "aliases": ["..."],
         "reason": "...", "source_url": "..."}
      ]
    }
"""

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config_manager import get_config, ConfigManager
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Kind of party"""
    INDIVIDUAL = "individual"
    COMPANY = "company"


class ListType(str, Enum):
    """Kind of reference list"""
    SANCTIONS = "sanctions"
    PEP = "pep"
    ADVERSE_MEDIA = "adverse_media"


# Lower sorts first: sanctions outrank PEP, PEP outranks adverse media
LIST_TYPE_PRIORITY: Dict[ListType, int] = {
    ListType.SANCTIONS: 0,
    ListType.PEP: 1,
    ListType.ADVERSE_MEDIA: 2,
}


class WatchlistError(Exception):
    """Raised when watchlist data cannot be loaded"""
    pass


class DuplicateEntryError(WatchlistError):
    """Raised when an entry id appears twice within one list"""
    pass


@dataclass(frozen=True)
class WatchlistEntry:
    """A reference-list record (sanctioned party, PEP, adverse-media subject)"""
    id: str
    name: str
    type: EntityType
    list_code: str
    list_name: str
    list_type: ListType
    dob: Optional[str] = None
    countries: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    reason: Optional[str] = None
    source_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'dob': self.dob,
            'countries': list(self.countries),
            'aliases': list(self.aliases),
            'listCode': self.list_code,
            'listName': self.list_name,
            'listType': self.list_type.value,
            'reason': self.reason,
            'sourceUrl': self.source_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], list_code: Optional[str] = None,
                  list_name: Optional[str] = None,
                  list_type: Optional[str] = None) -> 'WatchlistEntry':
        """Build an entry from a snapshot or API dict

        Accepts both snake_case and camelCase keys. List metadata given as
        arguments is used when the dict does not carry its own.

        Raises:
            ValueError: If a required field is missing or invalid
        """
        entry_id = str(data.get('id') or '').strip()
        name = str(data.get('name') or '').strip()
        if not entry_id:
            raise ValueError("entry has no id")
        if not name:
            raise ValueError(f"entry {entry_id} has no name")

        code = data.get('listCode') or data.get('list_code') or list_code
        lname = data.get('listName') or data.get('list_name') or list_name
        ltype = data.get('listType') or data.get('list_type') or list_type
        if not code or not lname or not ltype:
            raise ValueError(f"entry {entry_id} has no list metadata")

        countries = data.get('countries') or []
        aliases = data.get('aliases') or []
        if isinstance(countries, str):
            countries = [countries]
        if isinstance(aliases, str):
            aliases = [aliases]

        return cls(
            id=entry_id,
            name=name,
            type=EntityType(str(data.get('type') or 'individual').strip().lower()),
            list_code=str(code).lower(),
            list_name=str(lname),
            list_type=ListType(str(ltype).lower()),
            dob=(str(data['dob']).strip() or None) if data.get('dob') else None,
            countries=tuple(str(c).strip() for c in countries if str(c).strip()),
            aliases=tuple(str(a).strip() for a in aliases if str(a).strip()),
            reason=data.get('reason'),
            source_url=data.get('sourceUrl') or data.get('source_url'),
        )


class WatchlistSnapshot:
    """Immutable set of watchlist entries grouped by list code"""

    def __init__(self, entries: Iterable[WatchlistEntry]):
        by_list: Dict[str, List[WatchlistEntry]] = OrderedDict()
        seen = set()
        for entry in entries:
            key = (entry.list_code, entry.id)
            if key in seen:
                raise DuplicateEntryError(f"Duplicate entry id '{entry.id}' in list '{entry.list_code}'")
            seen.add(key)
            by_list.setdefault(entry.list_code, []).append(entry)

        self._by_list: Dict[str, Tuple[WatchlistEntry, ...]] = {
            code: tuple(items) for code, items in by_list.items()
        }

    @property
    def list_codes(self) -> Tuple[str, ...]:
        return tuple(sorted(self._by_list))

    def entries_for(self, list_codes: Iterable[str]) -> List[WatchlistEntry]:
        """Entries of the given lists, in list-code then load order"""
        result: List[WatchlistEntry] = []
        for code in sorted(set(list_codes)):
            result.extend(self._by_list.get(code, ()))
        return result

    def counts(self) -> Dict[str, int]:
        return {code: len(self._by_list[code]) for code in self.list_codes}

    def __len__(self) -> int:
        return sum(len(items) for items in self._by_list.values())

    def __contains__(self, list_code: str) -> bool:
        return list_code in self._by_list


def _load_list_file(path: Path, log_errors: bool = True) -> Tuple[List[WatchlistEntry], int, int]:
    """Parse one list file, returning (entries, total, malformed)"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise WatchlistError(f"Cannot read watchlist file {path.name}: {e}")

    if not isinstance(document, dict):
        raise WatchlistError(f"Watchlist file {path.name} must contain a JSON object")

    list_code = document.get('list_code')
    list_name = document.get('list_name')
    list_type = document.get('list_type')
    raw_entries = document.get('entries') or []

    entries = []
    malformed = 0
    for position, raw in enumerate(raw_entries):
        try:
            if not isinstance(raw, dict):
                raise ValueError("entry is not an object")
            entries.append(WatchlistEntry.from_dict(raw, list_code, list_name, list_type))
        except ValueError as e:
            malformed += 1
            if log_errors:
                logger.warning("Skipping malformed entry #%d in %s: %s",
                               position, path.name, sanitize_for_logging(str(e)))

    return entries, len(raw_entries), malformed


def load_snapshot(data_dir: Optional[str] = None, config: Optional[ConfigManager] = None) -> WatchlistSnapshot:
    """Load every *.json list file in a directory into a snapshot

    Args:
        data_dir: Directory holding list files (defaults to data.data_directory)
        config: Optional configuration manager

    Returns:
        WatchlistSnapshot

    Raises:
        WatchlistError: If a file is unreadable or too many entries are malformed
    """
    config = config or get_config()
    directory = Path(data_dir or config.data.data_directory)

    if not directory.is_dir():
        raise WatchlistError(f"Watchlist directory not found: {directory}")

    entries: List[WatchlistEntry] = []
    total = 0
    malformed = 0

    for path in sorted(directory.glob('*.json')):
        file_entries, file_total, file_malformed = _load_list_file(
            path, config.validation.log_validation_errors)
        entries.extend(file_entries)
        total += file_total
        malformed += file_malformed
        logger.info(f"✓ Loaded {len(file_entries)} entries from {path.name}")

    if total and malformed:
        malformed_pct = malformed / total * 100
        if (config.validation.abort_on_high_malformation
                and malformed_pct > config.data.malformed_entity_threshold):
            raise WatchlistError(
                f"{malformed} of {total} entries malformed ({malformed_pct:.2f}%), "
                f"above threshold of {config.data.malformed_entity_threshold}%"
            )

    snapshot = WatchlistSnapshot(entries)
    logger.info("Watchlist snapshot ready: %d entries across %d lists", len(snapshot), len(snapshot.list_codes))
    return snapshot
