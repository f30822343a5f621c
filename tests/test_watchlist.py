"""
Tests for watchlist entries, snapshots and snapshot loading.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from watchlist import (
    DuplicateEntryError,
    EntityType,
    ListType,
    WatchlistEntry,
    WatchlistError,
    WatchlistSnapshot,
    load_snapshot,
)

PROJECT_DATA = Path(__file__).parent.parent / "watchlist_data"


def write_list(directory, code, entries, list_type="sanctions"):
    path = directory / f"{code}.json"
    path.write_text(json.dumps({
        "list_code": code,
        "list_name": code.upper(),
        "list_type": list_type,
        "entries": entries,
    }), encoding="utf-8")
    return path


@pytest.fixture
def config(tmp_path):
    return ConfigManager(str(tmp_path / "defaults.yaml"))


class TestWatchlistEntry:
    """Tests for WatchlistEntry.from_dict."""

    def test_snake_and_camel_keys(self):
        """Both key styles are accepted."""
        entry = WatchlistEntry.from_dict({
            "id": "X-1", "name": "Ann Lee", "listCode": "OFAC", "listName": "OFAC SDN",
            "listType": "sanctions", "sourceUrl": "https://example.org",
        })
        assert entry.list_code == "ofac"
        assert entry.source_url == "https://example.org"
        assert entry.type == EntityType.INDIVIDUAL

    def test_list_metadata_from_arguments(self):
        """List metadata falls back to the arguments."""
        entry = WatchlistEntry.from_dict(
            {"id": "X-1", "name": "Acme", "type": "company", "countries": "GB"},
            "uk", "UK HMT Sanctions", "sanctions",
        )
        assert entry.list_type == ListType.SANCTIONS
        assert entry.countries == ("GB",)

    def test_missing_name(self):
        """Entries need a name."""
        with pytest.raises(ValueError):
            WatchlistEntry.from_dict({"id": "X-1"}, "ofac", "OFAC", "sanctions")

    def test_invalid_type(self):
        """Unknown entity types are rejected."""
        with pytest.raises(ValueError):
            WatchlistEntry.from_dict({"id": "X-1", "name": "A", "type": "vessel"}, "ofac", "OFAC", "sanctions")

    def test_to_dict_camel_case(self):
        """Serialized entries use camelCase keys."""
        entry = WatchlistEntry.from_dict({"id": "X-1", "name": "Ann Lee"}, "pep", "PEP List", "pep")
        data = entry.to_dict()
        assert data["listCode"] == "pep"
        assert data["listType"] == "pep"
        assert data["aliases"] == []


class TestWatchlistSnapshot:
    """Tests for WatchlistSnapshot."""

    def _entry(self, entry_id, code):
        return WatchlistEntry.from_dict({"id": entry_id, "name": "Ann Lee"}, code, code.upper(), "sanctions")

    def test_grouping_and_counts(self):
        """Entries are grouped by list code."""
        snapshot = WatchlistSnapshot([self._entry("1", "un"), self._entry("2", "ofac"), self._entry("3", "un")])
        assert snapshot.list_codes == ("ofac", "un")
        assert snapshot.counts() == {"ofac": 1, "un": 2}
        assert len(snapshot) == 3
        assert "un" in snapshot
        assert "eu" not in snapshot

    def test_entries_for_order(self):
        """entries_for returns list-code then load order."""
        snapshot = WatchlistSnapshot([self._entry("b", "un"), self._entry("a", "un"), self._entry("z", "eu")])
        assert [e.id for e in snapshot.entries_for(["un", "eu"])] == ["z", "b", "a"]

    def test_same_id_in_different_lists(self):
        """Ids only need to be unique within a list."""
        snapshot = WatchlistSnapshot([self._entry("1", "un"), self._entry("1", "ofac")])
        assert len(snapshot) == 2

    def test_duplicate_id_rejected(self):
        """A duplicate id within one list is rejected."""
        with pytest.raises(DuplicateEntryError):
            WatchlistSnapshot([self._entry("1", "un"), self._entry("1", "un")])


class TestLoadSnapshot:
    """Tests for loading list files."""

    def test_loads_every_file(self, tmp_path, config):
        """Every JSON file in the directory is loaded."""
        write_list(tmp_path, "ofac", [{"id": "1", "name": "Ann Lee"}])
        write_list(tmp_path, "pep", [{"id": "2", "name": "Bob Ray"}], list_type="pep")
        snapshot = load_snapshot(str(tmp_path), config)
        assert snapshot.counts() == {"ofac": 1, "pep": 1}

    def test_missing_directory(self, tmp_path, config):
        """A missing directory is a WatchlistError."""
        with pytest.raises(WatchlistError):
            load_snapshot(str(tmp_path / "nope"), config)

    def test_invalid_json(self, tmp_path, config):
        """An unreadable file is a WatchlistError."""
        (tmp_path / "ofac.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(WatchlistError):
            load_snapshot(str(tmp_path), config)

    def test_malformed_entries_abort_above_threshold(self, tmp_path, config):
        """Too many malformed entries abort loading."""
        write_list(tmp_path, "ofac", [{"id": "1", "name": "Ann Lee"}, {"id": "2"}])
        with pytest.raises(WatchlistError):
            load_snapshot(str(tmp_path), config)

    def test_malformed_entries_skipped_when_allowed(self, tmp_path, config):
        """Below the threshold, malformed entries are skipped."""
        config.data.malformed_entity_threshold = 60.0
        write_list(tmp_path, "ofac", [{"id": "1", "name": "Ann Lee"}, {"id": "2"}])
        assert len(load_snapshot(str(tmp_path), config)) == 1

    def test_project_sample_data(self, config):
        """The bundled sample data loads cleanly."""
        snapshot = load_snapshot(str(PROJECT_DATA), config)
        assert set(snapshot.list_codes) == {"adverse_media", "eu", "ofac", "pep", "uk", "un"}
        assert len(snapshot) > 0
