"""Include/exclude tag queries over the remote position table.

A query is resolved to the sorted tuple of corpus offsets whose prompt contains
every include tag and no exclude tag:

    result = ⋂ positions(include) \\ ⋃ positions(exclude)

All position sets are fetched concurrently on a thread pool and joined with
``concurrent.futures.wait``; the first failing fetch cancels the rest, and a
cancel request is noticed even while every fetch is still in flight.
The last resolved query is memoized in a single-slot ``QueryCache`` owned by
the resolver, so repeated runs with the same tags skip the network entirely.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass

from prompt_randomizer.errors import (
    InvalidQueryError,
    NoMatchesError,
    QueryCancelledError,
)
from prompt_randomizer.tag_index import TagIndexClient, TagIndexEntry
from prompt_randomizer.tokens import TokenSequence

log = logging.getLogger(__name__)

EXCLUDE_PREFIX = "~"
DEFAULT_MAX_WORKERS = 8
# Longest delay between a cancel request and QueryCancelledError
CANCEL_POLL_SECONDS = 0.05

ProgressCallback = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class Query:
    """De-duplicated include and exclude tags, in first-seen order."""

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    @classmethod
    def from_tags(cls, tags: Iterable[str]) -> Query:
        """Split tags on the ``~`` exclude prefix."""
        include: dict[str, None] = {}
        exclude: dict[str, None] = {}
        for tag in tags:
            if tag.startswith(EXCLUDE_PREFIX):
                exclude[tag[len(EXCLUDE_PREFIX):]] = None
            else:
                include[tag] = None
        return cls(tuple(include), tuple(exclude))

    @classmethod
    def from_tokens(cls, tokens: TokenSequence) -> Query:
        return cls.from_tags(tokens.texts())

    @property
    def key(self) -> str:
        """Canonical cache identity, independent of tag order."""
        return ",".join(sorted(self.include)) + "|" + ",".join(sorted(self.exclude))

    @property
    def is_empty(self) -> bool:
        return not self.include and not self.exclude


class QueryCache:
    """Single-slot memo of the last fully resolved query.

    The slot is replaced wholesale; lookups and stores are serialized by a lock
    so overlapping pipeline runs never observe a half-written slot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._key: str | None = None
        self._offsets: tuple[int, ...] = ()

    @property
    def key(self) -> str | None:
        with self._lock:
            return self._key

    def get(self, key: str) -> tuple[int, ...] | None:
        with self._lock:
            return self._offsets if key == self._key else None

    def put(self, key: str, offsets: tuple[int, ...]) -> None:
        with self._lock:
            self._key = key
            self._offsets = offsets

    def clear(self) -> None:
        with self._lock:
            self._key = None
            self._offsets = ()


class QueryResolver:
    """Resolves ``Query`` objects into candidate corpus offsets.

    Parameters
    ----------
    client:
        Tag index client used for lookups and position fetches.
    cache:
        Result memo; a private one is created when omitted.
    max_workers:
        Upper bound on concurrent position fetches.
    """

    def __init__(
        self,
        client: TagIndexClient,
        *,
        cache: QueryCache | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self._client = client
        self._cache = cache if cache is not None else QueryCache()
        self._max_workers = max(1, max_workers)

    @property
    def cache(self) -> QueryCache:
        return self._cache

    def resolve(
        self,
        query: Query,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> tuple[int, ...]:
        """Return the sorted candidate offsets for *query*.

        An empty query resolves to ``()`` without error.

        Raises
        ------
        InvalidQueryError
            Exclude tags without any include tag.
        TagNotFoundError
            First include (then exclude) tag missing from the index.
        FetchError
            Any position fetch failed.
        QueryCancelledError
            *cancel_event* was set before all fetches completed.
        NoMatchesError
            The combined candidate set is empty.
        """
        if query.is_empty:
            return ()
        if not query.include:
            raise InvalidQueryError(
                "Cannot exclude tags without at least one include tag"
            )

        include_entries = [self._client.lookup(tag) for tag in query.include]
        exclude_entries = [self._client.lookup(tag) for tag in query.exclude]

        key = query.key
        offsets = self._cache.get(key)
        if offsets is None:
            offsets = self._fetch_and_combine(
                include_entries, exclude_entries, on_progress, cancel_event,
            )
            self._cache.put(key, offsets)
        else:
            log.debug("Query cache hit for %s", key)

        if not offsets:
            raise NoMatchesError(f"No prompts found for {key}")
        return offsets

    def _fetch_and_combine(
        self,
        include_entries: list[TagIndexEntry],
        exclude_entries: list[TagIndexEntry],
        on_progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> tuple[int, ...]:
        jobs = [(True, e) for e in include_entries] + [(False, e) for e in exclude_entries]
        total = len(jobs)
        include_sets: list[frozenset[int]] = []
        exclude_sets: list[frozenset[int]] = []
        t0 = time.monotonic()

        if cancel_event is not None and cancel_event.is_set():
            raise QueryCancelledError("Query resolution cancelled")

        pool = ThreadPoolExecutor(
            max_workers=min(self._max_workers, total),
            thread_name_prefix="tag-fetch",
        )
        try:
            futures: dict[Future[frozenset[int]], tuple[bool, TagIndexEntry]] = {
                pool.submit(self._client.fetch_positions, entry): (is_include, entry)
                for is_include, entry in jobs
            }
            # With a cancel event the wait wakes periodically so a cancel is
            # noticed while every fetch is still in flight
            poll = CANCEL_POLL_SECONDS if cancel_event is not None else None
            pending: set[Future[frozenset[int]]] = set(futures)
            processed = 0
            while pending:
                done, pending = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
                if cancel_event is not None and cancel_event.is_set():
                    raise QueryCancelledError("Query resolution cancelled")
                for future in done:
                    if cancel_event is not None and cancel_event.is_set():
                        raise QueryCancelledError("Query resolution cancelled")
                    is_include, entry = futures[future]
                    positions = future.result()
                    log.debug("Fetched %d positions for %r", len(positions), entry.tag)
                    (include_sets if is_include else exclude_sets).append(positions)
                    processed += 1
                    _report(on_progress, f"Searching prompts... ({processed * 100 // total}%)")
        finally:
            # Drops queued fetches on error or cancellation; no-op on success
            pool.shutdown(wait=False, cancel_futures=True)

        combined = include_sets[0].intersection(*include_sets[1:])
        combined = combined.difference(*exclude_sets)
        offsets = tuple(sorted(combined))

        log.info(
            "Resolved %d include / %d exclude tags to %d prompts in %.2fs",
            len(include_sets), len(exclude_sets), len(offsets), time.monotonic() - t0,
        )
        _report(on_progress, f"Found {len(offsets)} prompts (100%)")
        return offsets


def _report(on_progress: ProgressCallback | None, message: str) -> None:
    if on_progress is None:
        return
    try:
        on_progress(message)
    except Exception as exc:
        log.warning("Progress callback failed: %s", exc)
