"""Read-only wildcard stores.

A wildcard store maps a wildcard token (delimiters included, e.g.
``__FAVORITE__``) to a multi-line body; each non-blank line is one candidate
replacement.  Writing or migrating stores is the caller's business.

Backends:

* ``MappingWildcardStore`` — in-memory dict (tests, JSON files).
* ``DirectoryWildcardStore`` — one ``<name>.txt`` file per wildcard.
* ``DuckDBWildcardStore`` — ``wildcards(name, body)`` table, opened read-only.

``open_wildcard_store(path)`` picks the backend from the path.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import duckdb
import orjson


WILDCARD_DELIMITER = "__"


def wildcard_key(name: str) -> str:
    """``"hair"`` → ``"__hair__"``."""
    return f"{WILDCARD_DELIMITER}{name}{WILDCARD_DELIMITER}"


def split_entries(body: str) -> list[str]:
    """Split a stored body into candidate lines, dropping blank lines."""
    return [line for line in body.split("\n") if line.strip()]


class WildcardStore(ABC):
    """Abstract key → multi-line text lookup."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the raw body stored under *key*, or None when absent."""

    def entries(self, key: str) -> list[str] | None:
        """Non-blank candidate lines for *key*, or None when absent."""
        body = self.get(key)
        if body is None:
            return None
        return split_entries(body)

    def close(self) -> None:
        """Release any held resources; a no-op for in-memory and file stores."""


class MappingWildcardStore(WildcardStore):
    """Wildcard store backed by a plain mapping."""

    def __init__(self, data: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    @classmethod
    def from_json(cls, path: Path) -> MappingWildcardStore:
        """Load ``{"__name__": "line\\nline", ...}``; list values are joined."""
        raw: Any = orjson.loads(path.read_bytes())
        if not isinstance(raw, dict):
            raise ValueError(f"Wildcard file must hold a JSON object: {path}")
        data: dict[str, str] = {}
        for key, value in raw.items():
            if isinstance(value, list):
                data[str(key)] = "\n".join(str(v) for v in value)
            else:
                data[str(key)] = str(value)
        return cls(data)


class DirectoryWildcardStore(WildcardStore):
    """One UTF-8 text file per wildcard: ``__hair__`` reads ``<root>/hair.txt``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def get(self, key: str) -> str | None:
        if not (
            key.startswith(WILDCARD_DELIMITER)
            and key.endswith(WILDCARD_DELIMITER)
            and len(key) > 2 * len(WILDCARD_DELIMITER)
        ):
            return None
        name = key[len(WILDCARD_DELIMITER):-len(WILDCARD_DELIMITER)]
        if "/" in name or "\\" in name or name in (".", ".."):
            return None
        path = self._root / f"{name}.txt"
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")


class DuckDBWildcardStore(WildcardStore):
    """Read-only wildcard table in a DuckDB database.

    Expects ``wildcards(name VARCHAR PRIMARY KEY, body VARCHAR)`` where ``name``
    is the full wildcard token.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: Any = duckdb.connect(str(db_path), read_only=True)

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT body FROM wildcards WHERE name = ?", [key]
        ).fetchone()
        return str(row[0]) if row and row[0] is not None else None

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> DuckDBWildcardStore:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()


def open_wildcard_store(path: Path | None) -> WildcardStore:
    """Open the store at *path*; ``None`` gives an empty store."""
    if path is None:
        return MappingWildcardStore()
    if path.is_dir():
        return DirectoryWildcardStore(path)
    if path.suffix == ".duckdb":
        return DuckDBWildcardStore(path)
    if path.suffix == ".json":
        return MappingWildcardStore.from_json(path)
    raise ValueError(f"Unsupported wildcard store: {path}")
