"""
Batch ingestion of party records.

Accepts tabular (CSV) submissions with flexible, case-insensitive header
synonyms, and JSON-shaped record lists as sent to the API.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from config_manager import get_config, ConfigManager
from log_utils import sanitize_for_logging
from validation import InputValidationError, validate_name

logger = logging.getLogger(__name__)

HEADER_SYNONYMS: Dict[str, tuple] = {
    'name': ('name', 'full name', 'fullname'),
    'type': ('type', 'entity type', 'entitytype'),
    'dob': ('dob', 'date of birth', 'dateofbirth', 'birth date'),
    'country': ('country', 'nationality', 'jurisdiction'),
    'id': ('id', 'record id', 'reference'),
    'aliases': ('aliases', 'alias', 'aka'),
}

ENTITY_TYPES = ('individual', 'company')
ALIAS_SEPARATOR = ';'


class BatchFormatError(InputValidationError):
    """Raised when a batch submission is malformed and must be re-submitted"""
    pass


@dataclass
class PartyRecord:
    """A party (customer, counterparty) submitted for screening"""
    id: str
    name: str
    type: str = 'individual'
    dob: Optional[str] = None
    country: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    # Validation failures confined to this record; screening reports them as diagnostics
    input_errors: List[InputValidationError] = field(default_factory=list, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'dob': self.dob,
            'country': self.country,
            'aliases': list(self.aliases),
        }


def _match_headers(headers: List[str]) -> Dict[str, int]:
    """Map canonical column names to positions (first synonym occurrence wins)"""
    columns: Dict[str, int] = {}
    for position, header in enumerate(headers):
        key = ' '.join(header.strip().lower().split())
        for canonical, synonyms in HEADER_SYNONYMS.items():
            if key in synonyms and canonical not in columns:
                columns[canonical] = position
    return columns


def _cell(row: List[str], columns: Dict[str, int], name: str) -> str:
    position = columns.get(name)
    if position is None or position >= len(row):
        return ''
    return row[position].strip()


def _check_batch_size(count: int, config: ConfigManager) -> None:
    limit = config.input_validation.max_batch_size
    if count > limit:
        raise BatchFormatError(
            f"Batch has {count} records, maximum is {limit}",
            field="records",
            code="BATCH_TOO_LARGE",
            suggestion="Split the batch into smaller submissions"
        )


def _record_name(value: str, row_label: str, config: ConfigManager,
                 errors: List[InputValidationError]) -> str:
    """Validate a record name

    A blank name is a format error. Any other rejected name stays with its
    record, cut to the maximum length, and the failure is kept in errors.
    """
    try:
        return validate_name(value, field='name', config=config)
    except InputValidationError as e:
        stripped = (value or '').strip()
        if not stripped:
            raise BatchFormatError(
                f"{row_label}: {e}",
                field=e.field,
                code=e.code,
                suggestion=e.suggestion
            )
        logger.warning("%s: name rejected (%s), record will not be screened", row_label, e.code)
        errors.append(e)
        return stripped[:config.input_validation.name_max_length]


def _record_aliases(values: List[str], row_label: str, config: ConfigManager,
                    errors: List[InputValidationError]) -> List[str]:
    """Validated aliases; rejected ones are dropped and kept in errors"""
    aliases = []
    for value in values:
        try:
            aliases.append(validate_name(value, field='aliases', config=config))
        except InputValidationError as e:
            logger.warning("%s: alias rejected (%s)", row_label, e.code)
            errors.append(e)
    return aliases


def _split_aliases(value: str) -> List[str]:
    return [a.strip() for a in value.split(ALIAS_SEPARATOR) if a.strip()]


def _check_unique_ids(records: List[PartyRecord]) -> None:
    seen = set()
    for record in records:
        if record.id in seen:
            raise BatchFormatError(
                f"Duplicate record id '{record.id}'",
                field="id",
                code="DUPLICATE_RECORD_ID",
                suggestion="Give every record in the batch a unique id"
            )
        seen.add(record.id)


def parse_csv(text: str, config: Optional[ConfigManager] = None) -> List[PartyRecord]:
    """Parse a CSV batch into party records

    Args:
        text: CSV content including a header row

    Returns:
        Records in file order; rows with a blank name are skipped

    Raises:
        BatchFormatError: If the content cannot be accepted as a batch
    """
    config = config or get_config()

    if text.startswith('\ufeff'):
        text = text[1:]

    # newline='' lets the csv module handle quoted line breaks and CRLF
    reader = csv.reader(io.StringIO(text, newline=''))
    rows = [row for row in reader if any(cell.strip() for cell in row)]

    if len(rows) < 2:
        raise BatchFormatError(
            "CSV must contain a header row and at least one data row",
            field="file",
            code="INSUFFICIENT_ROWS",
            suggestion="Add a header row (e.g. name,type,dob,country) followed by records"
        )

    headers = rows[0]
    columns = _match_headers(headers)
    if 'name' not in columns:
        raise BatchFormatError(
            f"Missing required name column. Found: {[sanitize_for_logging(h) for h in headers]}",
            field="name",
            code="MISSING_NAME_COLUMN",
            suggestion="Add a column named 'name', 'full name' or 'fullname'"
        )

    data_rows = [row for row in rows[1:] if _cell(row, columns, 'name')]
    _check_batch_size(len(data_rows), config)

    records: List[PartyRecord] = []
    for index, row in enumerate(data_rows):
        row_label = f"Row {index + 1}"
        errors: List[InputValidationError] = []
        name = _record_name(_cell(row, columns, 'name'), row_label, config, errors)
        aliases = _record_aliases(_split_aliases(_cell(row, columns, 'aliases')), row_label, config, errors)
        entity_type = 'company' if _cell(row, columns, 'type').lower() == 'company' else 'individual'

        records.append(PartyRecord(
            id=_cell(row, columns, 'id') or f"batch-{index}",
            name=name,
            type=entity_type,
            dob=_cell(row, columns, 'dob') or None,
            country=_cell(row, columns, 'country') or None,
            aliases=aliases,
            input_errors=errors,
        ))

    if not records:
        raise BatchFormatError(
            "No valid records found (every row has a blank name)",
            field="name",
            code="NO_VALID_RECORDS",
            suggestion="Fill in the name column"
        )

    _check_unique_ids(records)
    logger.info("Parsed %d records from CSV batch", len(records))
    return records


def parse_csv_file(path: str, config: Optional[ConfigManager] = None) -> List[PartyRecord]:
    """Parse a CSV batch file (UTF-8, optional BOM)"""
    content = Path(path).read_text(encoding='utf-8-sig')
    return parse_csv(content, config)


def parse_records(items: List[Dict[str, Any]], config: Optional[ConfigManager] = None) -> List[PartyRecord]:
    """Build party records from JSON-shaped dicts

    Raises:
        BatchFormatError: On a missing or duplicate id, a blank name or an unknown type

    Names and aliases failing input validation do not fail the batch; see
    PartyRecord.input_errors.
    """
    config = config or get_config()

    if not items:
        raise BatchFormatError(
            "Batch contains no records",
            field="records",
            code="NO_VALID_RECORDS",
            suggestion="Submit at least one record"
        )
    _check_batch_size(len(items), config)

    records: List[PartyRecord] = []
    for index, item in enumerate(items):
        row_label = f"Record {index + 1}"
        record_id = str(item.get('id') or '').strip()
        if not record_id:
            raise BatchFormatError(
                f"{row_label}: id is required",
                field="id",
                code="MISSING_RECORD_ID",
                suggestion="Give every record a caller-side id"
            )

        errors: List[InputValidationError] = []
        name = _record_name(str(item.get('name') or ''), row_label, config, errors)

        entity_type = str(item.get('type') or 'individual').strip().lower()
        if entity_type not in ENTITY_TYPES:
            raise BatchFormatError(
                f"{row_label}: unknown type '{sanitize_for_logging(entity_type)}'",
                field="type",
                code="INVALID_ENTITY_TYPE",
                suggestion="Use 'individual' or 'company'"
            )

        raw_aliases = item.get('aliases') or []
        if isinstance(raw_aliases, str):
            raw_aliases = _split_aliases(raw_aliases)
        aliases = _record_aliases([str(a) for a in raw_aliases if str(a).strip()], row_label, config, errors)

        dob = item.get('dob')
        country = item.get('country')
        records.append(PartyRecord(
            id=record_id,
            name=name,
            type=entity_type,
            dob=(str(dob).strip() or None) if dob is not None else None,
            country=(str(country).strip() or None) if country is not None else None,
            aliases=aliases,
            input_errors=errors,
        ))

    _check_unique_ids(records)
    return records
