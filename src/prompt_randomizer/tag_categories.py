"""Tag taxonomies used for filtering and canonical ordering.

The lists themselves are external data.  Each category is one JSON file in a
directory, named ``<category>.json``, holding either an array of tags or an
array of rows whose first element is the tag (``[["1girl", 512345], ...]``).
Order is preserved: ``TokenSequence.reorder`` extracts in list order.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import orjson


@dataclass(frozen=True, slots=True)
class TagCategories:
    """Ordered tag lists per category; empty tuples when unavailable."""

    count: tuple[str, ...] = ()
    character: tuple[str, ...] = ()
    copyright: tuple[str, ...] = ()
    artist: tuple[str, ...] = ()
    quality: tuple[str, ...] = ()
    whitelist: tuple[str, ...] = ()
    censor: tuple[str, ...] = ()
    bad: tuple[str, ...] = ()
    characteristic: tuple[str, ...] = ()
    clothes: tuple[str, ...] = ()
    ornament: tuple[str, ...] = ()
    emotions: tuple[str, ...] = ()

    @classmethod
    def category_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_directory(cls, root: Path) -> TagCategories:
        """Load every ``<category>.json`` present under *root*."""
        loaded: dict[str, tuple[str, ...]] = {}
        for name in cls.category_names():
            path = root / f"{name}.json"
            if path.is_file():
                loaded[name] = _tags_from_json(orjson.loads(path.read_bytes()), path)
        return cls(**loaded)


def _tags_from_json(raw: Any, path: Path) -> tuple[str, ...]:
    if not isinstance(raw, list):
        raise ValueError(f"Category file must hold a JSON array: {path}")
    tags: list[str] = []
    for row in raw:
        if isinstance(row, str):
            tags.append(row)
        elif isinstance(row, list) and row and isinstance(row[0], str):
            tags.append(row[0])
        else:
            raise ValueError(f"Malformed category row in {path}: {row!r}")
    return tuple(tags)
