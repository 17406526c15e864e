"""Process-level settings and per-run prompt options.

``RandomizerSettings`` describes where data lives and how it is fetched; it is
read once from ``PROMPT_RANDOMIZER_*`` environment variables.  ``PromptConfig``
carries the options of one pipeline run and may be loaded from a JSON file.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import orjson

from prompt_randomizer.prompt_fetcher import DEFAULT_WINDOW_BYTES
from prompt_randomizer.query_resolver import DEFAULT_MAX_WORKERS
from prompt_randomizer.range_reader import DEFAULT_TIMEOUT

ENV_PREFIX = "PROMPT_RANDOMIZER_"
DEFAULT_BASE_URL = "https://huggingface.co/Jio7/NAI-Prompt-Randomizer/resolve/main"


@dataclass(frozen=True, slots=True)
class RandomizerSettings:
    """Data locations and transport limits.

    Attributes
    ----------
    base_url:
        ``http(s)://`` prefix, ``s3://bucket/prefix`` or local directory that
        holds the position table and corpus.
    position_table / corpus_file:
        File names under *base_url*.
    tag_index_path:
        Local JSON tag → slot-range index.
    categories_dir:
        Directory of ``<category>.json`` taxonomies (optional).
    wildcards_path:
        Wildcard store location (directory, ``.json`` or ``.duckdb``; optional).
    """

    base_url: str = DEFAULT_BASE_URL
    position_table: str = "pos.dat"
    corpus_file: str = "tags.dat"
    tag_index_path: Path = Path("data/tag_index.json")
    categories_dir: Path | None = None
    wildcards_path: Path | None = None
    timeout: float = DEFAULT_TIMEOUT
    max_workers: int = DEFAULT_MAX_WORKERS
    window_bytes: int = DEFAULT_WINDOW_BYTES

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RandomizerSettings:
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name, "").strip()
            return value or None

        kwargs: dict[str, Any] = {}
        if (v := get("BASE_URL")) is not None:
            kwargs["base_url"] = v
        if (v := get("POSITION_TABLE")) is not None:
            kwargs["position_table"] = v
        if (v := get("CORPUS_FILE")) is not None:
            kwargs["corpus_file"] = v
        if (v := get("TAG_INDEX")) is not None:
            kwargs["tag_index_path"] = Path(v)
        if (v := get("CATEGORIES_DIR")) is not None:
            kwargs["categories_dir"] = Path(v)
        if (v := get("WILDCARDS")) is not None:
            kwargs["wildcards_path"] = Path(v)
        if (v := get("TIMEOUT")) is not None:
            kwargs["timeout"] = float(v)
        if (v := get("MAX_WORKERS")) is not None:
            kwargs["max_workers"] = int(v)
        if (v := get("WINDOW_BYTES")) is not None:
            kwargs["window_bytes"] = int(v)
        return cls(**kwargs)


@dataclass(slots=True)
class CharacterPrompt:
    """A per-character prompt; extra keys (position, uc...) pass through."""

    prompt: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**self.extra, "prompt": self.prompt}


@dataclass(slots=True)
class PromptConfig:
    """Options for one pipeline run."""

    prompt_beg: str = ""
    prompt_search: str = ""
    prompt_end: str = ""
    negative: str = ""
    search_disabled: bool = False
    remove_nsfw: bool = False
    remove_artist: bool = False
    remove_character: bool = False
    remove_characteristic: bool = False
    remove_attire: bool = False
    remove_copyright: bool = False
    remove_ornament: bool = False
    remove_emotion: bool = False
    reorder: bool = False
    naistandard: bool = False
    character_prompts: list[CharacterPrompt] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PromptConfig:
        """Build from a JSON-style dict; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {
            k: v for k, v in raw.items() if k in known and k != "character_prompts"
        }
        characters: list[CharacterPrompt] = []
        for item in raw.get("character_prompts") or []:
            if isinstance(item, str):
                characters.append(CharacterPrompt(item))
            else:
                extra = {k: v for k, v in item.items() if k != "prompt"}
                characters.append(CharacterPrompt(str(item.get("prompt", "")), extra))
        return cls(**kwargs, character_prompts=characters)

    @classmethod
    def from_json(cls, path: Path) -> PromptConfig:
        raw = orjson.loads(path.read_bytes())
        if not isinstance(raw, dict):
            raise ValueError(f"Prompt config must be a JSON object: {path}")
        return cls.from_dict(raw)
