"""Tests for prompt_randomizer.wildcards — read-only wildcard stores."""
from __future__ import annotations

from pathlib import Path

import duckdb
import orjson
import pytest

from prompt_randomizer.wildcards import (
    DirectoryWildcardStore,
    DuckDBWildcardStore,
    MappingWildcardStore,
    open_wildcard_store,
    split_entries,
    wildcard_key,
)


class TestHelpers:
    def test_wildcard_key(self) -> None:
        assert wildcard_key("hair") == "__hair__"

    def test_split_entries_drops_blank(self) -> None:
        assert split_entries("a\n\n  \nb\n") == ["a", "b"]


class TestMappingStore:
    def test_entries(self) -> None:
        store = MappingWildcardStore({"__x__": "one\n\ntwo"})
        assert store.entries("__x__") == ["one", "two"]
        assert store.entries("__y__") is None

    def test_from_json_accepts_lists(self, tmp_path: Path) -> None:
        path = tmp_path / "wc.json"
        path.write_bytes(orjson.dumps({"__x__": ["a", "b"], "__y__": "c\nd"}))
        store = MappingWildcardStore.from_json(path)
        assert store.entries("__x__") == ["a", "b"]
        assert store.entries("__y__") == ["c", "d"]

    def test_from_json_rejects_array(self, tmp_path: Path) -> None:
        path = tmp_path / "wc.json"
        path.write_bytes(b"[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            MappingWildcardStore.from_json(path)


class TestDirectoryStore:
    def test_reads_named_file(self, tmp_path: Path) -> None:
        (tmp_path / "hair.txt").write_text("long hair\nshort hair\n", encoding="utf-8")
        store = DirectoryWildcardStore(tmp_path)
        assert store.entries("__hair__") == ["long hair", "short hair"]

    def test_missing_file(self, tmp_path: Path) -> None:
        assert DirectoryWildcardStore(tmp_path).get("__hair__") is None

    def test_rejects_non_wildcard_keys(self, tmp_path: Path) -> None:
        (tmp_path / "hair.txt").write_text("x", encoding="utf-8")
        store = DirectoryWildcardStore(tmp_path)
        assert store.get("hair") is None
        assert store.get("____") is None

    def test_rejects_path_traversal(self, tmp_path: Path) -> None:
        (tmp_path / "secret.txt").write_text("x", encoding="utf-8")
        store = DirectoryWildcardStore(tmp_path / "sub")
        assert store.get("__../secret__") is None


class TestDuckDBStore:
    def _make_db(self, path: Path) -> None:
        conn = duckdb.connect(str(path))
        conn.execute("CREATE TABLE wildcards (name VARCHAR PRIMARY KEY, body VARCHAR)")
        conn.execute("INSERT INTO wildcards VALUES ('__pose__', 'standing\nsitting')")
        conn.close()

    def test_lookup(self, tmp_path: Path) -> None:
        db_path = tmp_path / "wildcards.duckdb"
        self._make_db(db_path)
        with DuckDBWildcardStore(db_path) as store:
            assert store.entries("__pose__") == ["standing", "sitting"]
            assert store.get("__missing__") is None

    def test_closed_connection_rejects_lookups(self, tmp_path: Path) -> None:
        db_path = tmp_path / "wildcards.duckdb"
        self._make_db(db_path)
        store = DuckDBWildcardStore(db_path)
        store.close()
        with pytest.raises(duckdb.Error):
            store.get("__pose__")

    def test_close_is_noop_for_memory_store(self) -> None:
        store = MappingWildcardStore({"__a__": "x"})
        store.close()
        assert store.get("__a__") == "x"


class TestOpenWildcardStore:
    def test_none_is_empty(self) -> None:
        assert open_wildcard_store(None).get("__x__") is None

    def test_directory(self, tmp_path: Path) -> None:
        assert isinstance(open_wildcard_store(tmp_path), DirectoryWildcardStore)

    def test_json(self, tmp_path: Path) -> None:
        path = tmp_path / "wc.json"
        path.write_bytes(b"{}")
        assert isinstance(open_wildcard_store(path), MappingWildcardStore)

    def test_unsupported(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unsupported"):
            open_wildcard_store(tmp_path / "wc.yaml")
