"""
Tests for batch ingestion of party records (CSV and JSON shapes).
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from record_ingestor import BatchFormatError, parse_csv, parse_csv_file, parse_records


@pytest.fixture
def config(tmp_path):
    return ConfigManager(str(tmp_path / "defaults.yaml"))


# ============================================
# CSV
# ============================================


class TestParseCsv:
    """Tests for tabular ingestion."""

    def test_quoted_comma(self, config):
        """A quoted field containing a comma stays one field."""
        text = 'name,type,dob,country\n"Smith, John",individual,1965-03-15,United States\n'
        records = parse_csv(text, config)
        assert len(records) == 1
        assert records[0].name == "Smith, John"
        assert records[0].type == "individual"
        assert records[0].dob == "1965-03-15"
        assert records[0].country == "United States"

    def test_doubled_quote_escape(self, config):
        """Doubled quotes inside a quoted field are unescaped."""
        records = parse_csv('name\n"John ""Jack"" Smith"\n', config)
        assert records[0].name == 'John "Jack" Smith'

    def test_header_synonyms_case_insensitive(self, config):
        """Header synonyms are matched regardless of case and spacing."""
        text = "Full Name,Entity Type,Date of Birth,Nationality\nAcme Holdings,Company,,GB\n"
        record = parse_csv(text, config)[0]
        assert record.name == "Acme Holdings"
        assert record.type == "company"
        assert record.dob is None
        assert record.country == "GB"

    def test_dateofbirth_synonym(self, config):
        """dateofbirth is accepted as a DOB header."""
        assert parse_csv("fullname,dateofbirth\nAnn Lee,1980\n", config)[0].dob == "1980"

    def test_unknown_type_defaults_individual(self, config):
        """Only 'company' is recognized besides the default."""
        assert parse_csv("name,type\nAnn Lee,person\n", config)[0].type == "individual"

    def test_generated_ids(self, config):
        """Without an id column records get batch-{i} ids over kept rows."""
        records = parse_csv("name\nAnn Lee\n\nBob Ray\n", config)
        assert [r.id for r in records] == ["batch-0", "batch-1"]

    def test_id_and_alias_columns(self, config):
        """Caller ids and ;-separated aliases are read."""
        text = "reference,name,aka\nC-1,Ann Lee,\"Annie Lee, Ann L\"\n"
        record = parse_csv(text, config)[0]
        assert record.id == "C-1"
        assert record.aliases == ["Annie Lee, Ann L"]

    def test_blank_names_skipped(self, config):
        """Rows with a blank name are skipped."""
        records = parse_csv("name,country\nAnn Lee,US\n  ,GB\n", config)
        assert [r.name for r in records] == ["Ann Lee"]

    def test_bom_and_crlf(self, config):
        """A UTF-8 BOM and CRLF line endings are accepted."""
        records = parse_csv("\ufeffname,country\r\nAnn Lee,US\r\nBob Ray,GB\r\n", config)
        assert [r.name for r in records] == ["Ann Lee", "Bob Ray"]

    def test_header_only_rejected(self, config):
        """Fewer than a header plus one data row is a format error."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_csv("name,country\n", config)
        assert exc_info.value.code == "INSUFFICIENT_ROWS"

    def test_blank_lines_do_not_count(self, config):
        """Entirely blank rows are dropped before the row count check."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_csv("name\n\n,\n", config)
        assert exc_info.value.code == "INSUFFICIENT_ROWS"

    def test_missing_name_column(self, config):
        """A header without a name synonym is rejected."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_csv("customer,country\nAnn Lee,US\n", config)
        assert exc_info.value.code == "MISSING_NAME_COLUMN"

    def test_all_names_blank(self, config):
        """Zero valid records after filtering is a format error."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_csv("name,country\n,US\n,GB\n", config)
        assert exc_info.value.code == "NO_VALID_RECORDS"

    def test_duplicate_ids(self, config):
        """Caller ids must be unique."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_csv("id,name\n1,Ann Lee\n1,Bob Ray\n", config)
        assert exc_info.value.code == "DUPLICATE_RECORD_ID"

    def test_blocked_characters_stay_on_record(self, config):
        """A name with injection characters fails only its own row."""
        records = parse_csv("name\nAnn Lee\n<script>alert(1)</script>\nBob Ray\n", config)
        assert [r.name for r in records] == ["Ann Lee", "<script>alert(1)</script>", "Bob Ray"]
        assert records[0].input_errors == []
        assert [(e.field, e.code) for e in records[1].input_errors] == [("name", "BLOCKED_CHARACTERS")]

    def test_invalid_alias_dropped(self, config):
        """A rejected alias is dropped and kept as an input error."""
        records = parse_csv("name,aliases\nAnn Lee,Annie L;A$AP\n", config)
        assert records[0].aliases == ["Annie L"]
        assert [(e.field, e.code) for e in records[0].input_errors] == [("aliases", "BLOCKED_CHARACTERS")]

    def test_batch_too_large(self, config):
        """Batches above max_batch_size are rejected."""
        config.input_validation.max_batch_size = 2
        with pytest.raises(BatchFormatError) as exc_info:
            parse_csv("name\nA B\nC D\nE F\n", config)
        assert exc_info.value.code == "BATCH_TOO_LARGE"

    def test_parse_csv_file(self, config, tmp_path):
        """Files are read as UTF-8 with an optional BOM."""
        path = tmp_path / "batch.csv"
        path.write_text("name,country\nJosé García,ES\n", encoding="utf-8-sig")
        assert parse_csv_file(str(path), config)[0].name == "José García"


# ============================================
# JSON RECORDS
# ============================================


class TestParseRecords:
    """Tests for JSON-shaped ingestion."""

    def test_basic(self, config):
        """All fields are read and trimmed."""
        records = parse_records([
            {"id": "r1", "name": " John Smith ", "dob": "1965-03-15", "country": "US"},
            {"id": "r2", "name": "Acme", "type": "Company", "aliases": ["Acme Ltd"]},
        ], config)
        assert records[0].name == "John Smith"
        assert records[0].type == "individual"
        assert records[1].type == "company"
        assert records[1].aliases == ["Acme Ltd"]

    def test_empty_batch(self, config):
        """An empty list is rejected."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_records([], config)
        assert exc_info.value.code == "NO_VALID_RECORDS"

    def test_missing_id(self, config):
        """Every record needs an id."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_records([{"name": "Ann Lee"}], config)
        assert exc_info.value.code == "MISSING_RECORD_ID"

    def test_blank_name(self, config):
        """Names must be non-empty after trimming."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_records([{"id": "1", "name": "   "}], config)
        assert exc_info.value.code == "NAME_TOO_SHORT"

    def test_bad_name_does_not_fail_batch(self, config):
        """Blocked characters and overlong names are confined to their record."""
        records = parse_records([
            {"id": "1", "name": "Ann Lee"},
            {"id": "2", "name": "Ke$ha Rose"},
            {"id": "3", "name": "A" * 300},
        ], config)
        assert [r.id for r in records] == ["1", "2", "3"]
        assert records[1].input_errors[0].code == "BLOCKED_CHARACTERS"
        assert records[2].input_errors[0].code == "NAME_TOO_LONG"
        assert len(records[2].name) == config.input_validation.name_max_length

    def test_unknown_type(self, config):
        """Types other than individual and company are rejected."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_records([{"id": "1", "name": "Ann Lee", "type": "vessel"}], config)
        assert exc_info.value.code == "INVALID_ENTITY_TYPE"

    def test_duplicate_ids(self, config):
        """Ids must be unique within the batch."""
        with pytest.raises(BatchFormatError) as exc_info:
            parse_records([{"id": "1", "name": "Ann Lee"}, {"id": "1", "name": "Bob Ray"}], config)
        assert exc_info.value.code == "DUPLICATE_RECORD_ID"

    def test_alias_string_split(self, config):
        """Aliases given as one string are split on semicolons."""
        records = parse_records([{"id": "1", "name": "Ann Lee", "aliases": "Annie Lee; A. Lee"}], config)
        assert records[0].aliases == ["Annie Lee", "A. Lee"]

    def test_unparseable_dob_kept(self, config):
        """DOB is not validated at ingestion; the screener degrades it."""
        records = parse_records([{"id": "1", "name": "Ann Lee", "dob": "not-a-date"}], config)
        assert records[0].dob == "not-a-date"
