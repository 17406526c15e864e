"""Tag → position-table index and position-set fetches.

The position table (``pos.dat``) is a flat file of big-endian uint32 values.
Each tag owns one contiguous slot range ``[start, end)`` in it; slot ``i``
lives at bytes ``[4*i, 4*i + 4)`` and holds the byte offset of one corpus line
(one prompt) that contains the tag.

The tag → range mapping is small, static, and loaded once from JSON::

    {"1girl": {"start": 0, "end": 51234}, "solo": [51234, 90000], ...}
"""
from __future__ import annotations

import struct
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

import orjson

from prompt_randomizer.errors import FetchError, TagNotFoundError
from prompt_randomizer.range_reader import RangeReader

SLOT_SIZE = 4


@dataclass(frozen=True, slots=True)
class TagIndexEntry:
    """Half-open slot range of one tag inside the position table."""

    tag: str
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise ValueError(
                f"Invalid slot range for {self.tag!r}: [{self.start}, {self.end})"
            )

    @property
    def slot_count(self) -> int:
        return self.end - self.start

    @property
    def byte_start(self) -> int:
        return self.start * SLOT_SIZE

    @property
    def byte_length(self) -> int:
        return self.slot_count * SLOT_SIZE


def decode_positions(data: bytes) -> frozenset[int]:
    """Decode big-endian uint32 values into a position set."""
    if len(data) % SLOT_SIZE != 0:
        raise ValueError(f"Byte length {len(data)} is not a multiple of {SLOT_SIZE}")
    n = len(data) // SLOT_SIZE
    return frozenset(struct.unpack(f">{n}I", data))


def encode_positions(offsets: Iterable[int]) -> bytes:
    """Encode offsets as big-endian uint32 values (index building, fixtures)."""
    values = list(offsets)
    return struct.pack(f">{len(values)}I", *values)


def _entry_from_json(tag: str, value: Any) -> TagIndexEntry:
    if isinstance(value, Mapping):
        return TagIndexEntry(tag, int(value["start"]), int(value["end"]))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return TagIndexEntry(tag, int(value[0]), int(value[1]))
    raise ValueError(f"Malformed tag index entry for {tag!r}: {value!r}")


class TagIndex:
    """Immutable tag → ``TagIndexEntry`` mapping."""

    def __init__(self, entries: Iterable[TagIndexEntry]) -> None:
        self._entries: Mapping[str, TagIndexEntry] = MappingProxyType(
            {e.tag: e for e in entries}
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> TagIndex:
        return cls(_entry_from_json(str(tag), value) for tag, value in raw.items())

    @classmethod
    def from_json(cls, path: Path) -> TagIndex:
        raw = orjson.loads(path.read_bytes())
        if not isinstance(raw, dict):
            raise ValueError(f"Tag index must be a JSON object: {path}")
        return cls.from_mapping(raw)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tag: object) -> bool:
        return tag in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def get(self, tag: str) -> TagIndexEntry | None:
        return self._entries.get(tag)

    def lookup(self, tag: str) -> TagIndexEntry:
        entry = self._entries.get(tag)
        if entry is None:
            raise TagNotFoundError(tag)
        return entry


class TagIndexClient:
    """Resolves tags to entries and fetches their position sets."""

    def __init__(self, index: TagIndex, reader: RangeReader) -> None:
        self._index = index
        self._reader = reader

    @property
    def index(self) -> TagIndex:
        return self._index

    def lookup(self, tag: str) -> TagIndexEntry:
        return self._index.lookup(tag)

    def fetch_positions(self, entry: TagIndexEntry) -> frozenset[int]:
        """Read and decode the slot range of *entry* in one range request.

        Raises
        ------
        FetchError
            On transport failure or when fewer/more bytes than the range
            arrive.
        """
        if entry.slot_count == 0:
            return frozenset()
        data = self._reader.read_range(entry.byte_start, entry.byte_length)
        if len(data) != entry.byte_length:
            raise FetchError(
                f"Position range for {entry.tag!r} returned {len(data)} bytes, "
                f"expected {entry.byte_length}",
                location=self._reader.location,
            )
        return decode_positions(data)
