"""Shared fixtures: a miniature position table + corpus laid out on disk."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import orjson
import pytest

from prompt_randomizer.tag_index import encode_positions


SAMPLE_PROMPTS = [
    "1girl, solo, long hair, smile, rating:g",
    "1girl, solo, short hair, rating:s",
    "2girls, long hair, smile, rating:g",
    "1boy, solo, smile, rating:e",
    "1girl, long hair, monochrome, rating:q",
    "1girl, solo, long hair, monochrome, hat, rating:g",
]


@dataclass(frozen=True)
class CorpusFiles:
    """Paths and ground truth for a generated corpus."""

    root: Path
    tag_index_path: Path
    offsets_by_tag: dict[str, frozenset[int]]
    line_at: dict[int, str]

    def positions(self, tag: str) -> frozenset[int]:
        return self.offsets_by_tag[tag]


def write_corpus(root: Path, prompts: list[str]) -> CorpusFiles:
    root.mkdir(parents=True, exist_ok=True)

    corpus = b""
    line_at: dict[int, str] = {}
    offsets_by_tag: dict[str, set[int]] = {}
    for line in prompts:
        offset = len(corpus)
        line_at[offset] = line
        for tag in line.split(", "):
            offsets_by_tag.setdefault(tag, set()).add(offset)
        corpus += line.encode("utf-8") + b"\n"
    (root / "tags.dat").write_bytes(corpus)

    table = b""
    index: dict[str, list[int]] = {}
    for tag in sorted(offsets_by_tag):
        start = len(table) // 4
        table += encode_positions(sorted(offsets_by_tag[tag]))
        index[tag] = [start, len(table) // 4]
    (root / "pos.dat").write_bytes(table)

    tag_index_path = root / "tag_index.json"
    tag_index_path.write_bytes(orjson.dumps(index))

    return CorpusFiles(
        root=root,
        tag_index_path=tag_index_path,
        offsets_by_tag={k: frozenset(v) for k, v in offsets_by_tag.items()},
        line_at=line_at,
    )


@pytest.fixture()
def corpus(tmp_path: Path) -> CorpusFiles:
    return write_corpus(tmp_path / "corpus", SAMPLE_PROMPTS)
