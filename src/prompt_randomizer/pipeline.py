"""End-to-end prompt assembly.

Order of operations for one run:

1. Expand each fragment: dynamic choices → wildcards → dynamic choices
   (the negative fragment gets dynamic choices only).
2. Parse fragments into ``TokenSequence``.
3. Resolve the search fragment to candidate offsets and fetch one random
   corpus prompt (skipped when search is disabled or the fragment is empty).
4. Filter the random prompt: whitelist, category removals, rating tags, bad
   tags, tags already supplied by the user, censor tags when uncensored.
5. Apply business rules (character strengthening etc. live outside this
   package and plug in as callables).
6. Assemble beginning + random + end, de-duplicate, optionally reorder and
   standardize, serialize.
"""
from __future__ import annotations

import logging
import random
import re
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from prompt_randomizer.expanders import expand_dynamic_choices, expand_prompt
from prompt_randomizer.prompt_fetcher import PromptFetcher
from prompt_randomizer.query_resolver import (
    ProgressCallback,
    Query,
    QueryCache,
    QueryResolver,
)
from prompt_randomizer.range_reader import open_range_reader
from prompt_randomizer.settings import CharacterPrompt, PromptConfig, RandomizerSettings
from prompt_randomizer.tag_categories import TagCategories
from prompt_randomizer.tag_index import TagIndex, TagIndexClient
from prompt_randomizer.tokens import TokenSequence
from prompt_randomizer.wildcards import MappingWildcardStore, WildcardStore, open_wildcard_store

log = logging.getLogger(__name__)

UNCENSORED_TAG = "uncensored"
SAFE_RATING_TAG = "rating:g"

# The index stores ratings in their short form
RATING_SHORT_FORMS: dict[str, str] = {
    "rating:general": "rating:g",
    "rating:questionable": "rating:q",
    "rating:explicit": "rating:e",
    "rating:sensitive": "rating:s",
}
RATING_LONG_FORMS: dict[str, str] = {v: k for k, v in RATING_SHORT_FORMS.items()}
RATING_TAGS: tuple[str, ...] = tuple(RATING_SHORT_FORMS)

_RATING_RE = re.compile(r"rating: ?(general|questionable|explicit|sensitive)\b")


def shorten_ratings(text: str) -> str:
    """``rating:general`` / ``rating: general`` → ``rating:g`` (and q, e, s)."""
    return _RATING_RE.sub(lambda m: "rating:" + m.group(1)[0], text)


def expand_ratings(tokens: TokenSequence) -> None:
    """Rewrite short rating tags back to their long form, in place."""
    for i, token in enumerate(tokens):
        if token.text in RATING_LONG_FORMS:
            tokens.set_text(i, RATING_LONG_FORMS[token.text])


@dataclass(slots=True)
class PromptParts:
    """Parsed fragments of one run, handed to business rules for editing."""

    beginning: TokenSequence
    search: TokenSequence
    end: TokenSequence
    negative: TokenSequence
    random: TokenSequence = field(default_factory=TokenSequence)


BusinessRule = Callable[[PromptParts], None]


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Output of one run."""

    prompt: str
    negative: str
    random_prompt: str = ""
    candidates: int = 0
    character_prompts: tuple[dict[str, Any], ...] = ()


class PromptPipeline:
    """Sequences expansion, search, filtering and assembly.

    Parameters
    ----------
    resolver:
        Query resolver; its cache persists across ``run`` calls.
    fetcher:
        Corpus prompt fetcher.
    categories:
        Tag taxonomies for filtering and ordering.
    wildcards:
        Wildcard store consulted during expansion.
    business_rules:
        Callables applied, in order, to the parsed parts before assembly.
    rng:
        Random source for choices, wildcards and prompt selection.
    """

    def __init__(
        self,
        resolver: QueryResolver,
        fetcher: PromptFetcher,
        *,
        categories: TagCategories | None = None,
        wildcards: WildcardStore | None = None,
        business_rules: Sequence[BusinessRule] = (),
        rng: random.Random | None = None,
    ) -> None:
        self._resolver = resolver
        self._fetcher = fetcher
        self._categories = categories or TagCategories()
        self._wildcards = wildcards or MappingWildcardStore()
        self._business_rules = tuple(business_rules)
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        settings: RandomizerSettings,
        *,
        cache: QueryCache | None = None,
        s3_client: Any = None,
        business_rules: Sequence[BusinessRule] = (),
        rng: random.Random | None = None,
    ) -> PromptPipeline:
        """Wire readers, index, taxonomies and wildcard store from *settings*."""
        index = TagIndex.from_json(settings.tag_index_path)
        log.info("Loaded %d tags from %s", len(index), settings.tag_index_path)
        positions = open_range_reader(
            settings.base_url, settings.position_table,
            timeout=settings.timeout, s3_client=s3_client,
        )
        corpus = open_range_reader(
            settings.base_url, settings.corpus_file,
            timeout=settings.timeout, s3_client=s3_client,
        )
        resolver = QueryResolver(
            TagIndexClient(index, positions),
            cache=cache,
            max_workers=settings.max_workers,
        )
        categories = (
            TagCategories.from_directory(settings.categories_dir)
            if settings.categories_dir is not None
            else TagCategories()
        )
        return cls(
            resolver,
            PromptFetcher(corpus, window_bytes=settings.window_bytes),
            categories=categories,
            wildcards=open_wildcard_store(settings.wildcards_path),
            business_rules=business_rules,
            rng=rng,
        )

    @property
    def resolver(self) -> QueryResolver:
        return self._resolver

    def close(self) -> None:
        """Release the wildcard store (closes a DuckDB connection)."""
        self._wildcards.close()

    def __enter__(self) -> PromptPipeline:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    # -- runs --------------------------------------------------------------

    def run(
        self,
        config: PromptConfig,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """Assemble the final prompt for *config*.

        Errors from the resolver and fetcher (``TagNotFoundError``,
        ``InvalidQueryError``, ``NoMatchesError``, ``FetchError``...) propagate.
        """
        search_text = config.prompt_search
        if config.remove_nsfw and search_text.strip():
            search_text += ", " + SAFE_RATING_TAG
        search_text = shorten_ratings(search_text)

        parts = PromptParts(
            beginning=TokenSequence.parse(self._expand(config.prompt_beg)),
            search=TokenSequence.parse(self._expand(search_text)),
            end=TokenSequence.parse(self._expand(config.prompt_end)),
            negative=TokenSequence.parse(self._expand_negative(config.negative)),
        )

        raw_random = ""
        candidates = 0
        if not config.search_disabled:
            offsets = self._resolver.resolve(
                Query.from_tokens(parts.search), on_progress, cancel_event,
            )
            candidates = len(offsets)
            if offsets:
                raw_random = self._fetcher.fetch_random(offsets, self._rng)
                parts.random = TokenSequence.parse(raw_random)
                expand_ratings(parts.random)
                self._filter_random(parts, config)

        if UNCENSORED_TAG in parts.beginning or UNCENSORED_TAG in parts.end:
            parts.random.remove(self._categories.censor)

        for rule in self._business_rules:
            rule(parts)

        result = TokenSequence()
        result.concat(parts.beginning)
        result.concat(parts.random)
        result.concat(parts.end)
        self._finish(result, config)

        characters = tuple(
            self._character_result(c, config) for c in config.character_prompts
        )
        return PipelineResult(
            prompt=result.to_text(close_groups=True),
            negative=parts.negative.to_text(close_groups=True),
            random_prompt=raw_random,
            candidates=candidates,
            character_prompts=characters,
        )

    def process_character_prompt(self, text: str, config: PromptConfig) -> str:
        """Expand and normalize a single character prompt (no search)."""
        tokens = TokenSequence.parse(self._expand(text))
        self._finish(tokens, config)
        return tokens.to_text(close_groups=True)

    # -- helpers -----------------------------------------------------------

    def _expand(self, text: str) -> str:
        return expand_prompt(text, self._wildcards, self._rng)

    def _expand_negative(self, text: str) -> str:
        text = expand_dynamic_choices(text, self._rng)
        return expand_dynamic_choices(text, self._rng)

    def _filter_random(self, parts: PromptParts, config: PromptConfig) -> None:
        tokens = parts.random
        c = self._categories

        if c.whitelist:
            tokens.keep_only(c.whitelist)

        removals = (
            (config.remove_artist, c.artist),
            (config.remove_character, c.character),
            (config.remove_characteristic, c.characteristic),
            (config.remove_attire, c.clothes),
            (config.remove_copyright, c.copyright),
            (config.remove_ornament, c.ornament),
            (config.remove_emotion, c.emotions),
        )
        for enabled, tags in removals:
            if enabled:
                tokens.remove(tags)

        tokens.remove(RATING_TAGS)
        tokens.remove(c.bad)

        # Tags the user already placed elsewhere
        tokens.remove(parts.beginning.texts())
        tokens.remove(parts.end.texts())
        tokens.remove(parts.negative.texts())

    def _finish(self, tokens: TokenSequence, config: PromptConfig) -> None:
        tokens.remove_duplicates()
        if config.reorder:
            tokens.reorder(self._categories)
        if config.naistandard:
            tokens.nai_standard(self._categories.artist)

    def _character_result(self, character: CharacterPrompt, config: PromptConfig) -> dict[str, Any]:
        out = character.to_dict()
        out["prompt"] = self.process_character_prompt(character.prompt, config)
        return out
