"""Exception hierarchy for prompt resolution.

Every failure surfaced by the pipeline derives from ``PromptRandomizerError`` so
callers can catch one type.  Nothing here is retried internally; retry and
backoff belong to whoever drives the pipeline.
"""
from __future__ import annotations


class PromptRandomizerError(RuntimeError):
    """Base class for all prompt-randomizer failures."""


class TagNotFoundError(PromptRandomizerError):
    """Raised when an include/exclude tag has no entry in the tag index."""

    def __init__(self, tag: str) -> None:
        super().__init__(f'Tag "{tag}" not found')
        self.tag = tag


class InvalidQueryError(PromptRandomizerError):
    """Raised for queries that cannot be resolved (exclude-only)."""


class NoMatchesError(PromptRandomizerError):
    """Raised when the combined candidate offset set is empty."""


class FetchError(PromptRandomizerError):
    """Raised on transport failure or an inconsistent remote read."""

    def __init__(self, message: str, *, location: str = "") -> None:
        super().__init__(f"{message} ({location})" if location else message)
        self.location = location


class QueryCancelledError(PromptRandomizerError):
    """Raised when a resolution is abandoned before all fetches finish."""
