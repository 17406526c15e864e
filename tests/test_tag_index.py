"""Tests for prompt_randomizer.tag_index — slot ranges and position fetches."""
from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from conftest import CorpusFiles
from prompt_randomizer.errors import FetchError, TagNotFoundError
from prompt_randomizer.range_reader import LocalFileRangeReader
from prompt_randomizer.tag_index import (
    TagIndex,
    TagIndexClient,
    TagIndexEntry,
    decode_positions,
    encode_positions,
)


class TestPositionCodec:
    def test_big_endian(self) -> None:
        assert encode_positions([1, 256]) == b"\x00\x00\x00\x01\x00\x00\x01\x00"
        assert decode_positions(b"\x00\x00\x00\x01\x00\x00\x01\x00") == {1, 256}

    def test_full_uint32_range(self) -> None:
        assert decode_positions(b"\xff\xff\xff\xff") == {4294967295}

    def test_empty(self) -> None:
        assert decode_positions(b"") == frozenset()

    def test_bad_length(self) -> None:
        with pytest.raises(ValueError, match="not a multiple of 4"):
            decode_positions(b"\x00\x00\x01")


class TestTagIndexEntry:
    def test_byte_range(self) -> None:
        entry = TagIndexEntry("smile", 3, 7)
        assert entry.slot_count == 4
        assert entry.byte_start == 12
        assert entry.byte_length == 16

    def test_invalid_range(self) -> None:
        with pytest.raises(ValueError, match="Invalid slot range"):
            TagIndexEntry("x", 5, 2)


class TestTagIndex:
    def test_from_mapping_both_forms(self) -> None:
        index = TagIndex.from_mapping({"a": {"start": 0, "end": 2}, "b": [2, 5]})
        assert index.lookup("a") == TagIndexEntry("a", 0, 2)
        assert index.lookup("b") == TagIndexEntry("b", 2, 5)
        assert len(index) == 2
        assert "a" in index
        assert sorted(index) == ["a", "b"]

    def test_lookup_missing(self) -> None:
        index = TagIndex.from_mapping({})
        with pytest.raises(TagNotFoundError, match='Tag "doesnotexist" not found') as info:
            index.lookup("doesnotexist")
        assert info.value.tag == "doesnotexist"
        assert index.get("doesnotexist") is None

    def test_malformed_entry(self) -> None:
        with pytest.raises(ValueError, match="Malformed"):
            TagIndex.from_mapping({"a": "0-2"})

    def test_from_json(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_bytes(orjson.dumps({"solo": [0, 3]}))
        assert TagIndex.from_json(path).lookup("solo").end == 3


class TestTagIndexClient:
    def test_fetch_positions(self, corpus: CorpusFiles) -> None:
        index = TagIndex.from_json(corpus.tag_index_path)
        client = TagIndexClient(index, LocalFileRangeReader(corpus.root / "pos.dat"))
        for tag in ("1girl", "smile", "monochrome", "hat"):
            assert client.fetch_positions(client.lookup(tag)) == corpus.positions(tag)

    def test_positions_point_at_lines_with_tag(self, corpus: CorpusFiles) -> None:
        index = TagIndex.from_json(corpus.tag_index_path)
        client = TagIndexClient(index, LocalFileRangeReader(corpus.root / "pos.dat"))
        for offset in client.fetch_positions(client.lookup("long hair")):
            assert "long hair" in corpus.line_at[offset].split(", ")

    def test_empty_range_skips_read(self, tmp_path: Path) -> None:
        index = TagIndex.from_mapping({"rare": [0, 0]})
        client = TagIndexClient(index, LocalFileRangeReader(tmp_path / "absent"))
        assert client.fetch_positions(client.lookup("rare")) == frozenset()

    def test_truncated_table_is_fetch_error(self, tmp_path: Path) -> None:
        table = tmp_path / "pos.dat"
        table.write_bytes(encode_positions([0, 10]))
        index = TagIndex.from_mapping({"a": [0, 4]})
        client = TagIndexClient(index, LocalFileRangeReader(table))
        with pytest.raises(FetchError, match="returned 8 bytes, expected 16"):
            client.fetch_positions(client.lookup("a"))
