"""Reads single prompts out of the line-oriented corpus file."""
from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from prompt_randomizer.errors import FetchError
from prompt_randomizer.range_reader import RangeReader

log = logging.getLogger(__name__)

# Covers the longest corpus line with room to spare
DEFAULT_WINDOW_BYTES = 10_001


class PromptFetcher:
    """Fetches the corpus line starting at a given byte offset.

    Parameters
    ----------
    reader:
        Range reader over the corpus file.
    window_bytes:
        Bytes read per fetch; must exceed the longest line plus terminator.
    """

    def __init__(self, reader: RangeReader, *, window_bytes: int = DEFAULT_WINDOW_BYTES) -> None:
        if window_bytes <= 0:
            raise ValueError(f"window_bytes must be positive, got {window_bytes}")
        self._reader = reader
        self._window_bytes = window_bytes

    def fetch(self, offset: int) -> str:
        """Return the prompt text at *offset*, without its line terminator.

        Raises
        ------
        FetchError
            Transport failure, no ``\\n`` inside the window, or a line that is
            not valid UTF-8.
        """
        window = self._reader.read_range(offset, self._window_bytes)
        end = window.find(b"\n")
        if end < 0:
            raise FetchError(
                f"No line terminator within {self._window_bytes} bytes at offset {offset}",
                location=self._reader.location,
            )
        try:
            line = window[:end].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FetchError(
                f"Corpus line at offset {offset} is not valid UTF-8",
                location=self._reader.location,
            ) from exc
        return line.removesuffix("\r")

    def fetch_random(self, offsets: Sequence[int], rng: random.Random | None = None) -> str:
        """Fetch one prompt chosen uniformly from *offsets*."""
        if not offsets:
            raise ValueError("No candidate offsets to choose from")
        offset = (rng or random.Random()).choice(offsets)
        log.debug("Fetching prompt at offset %d of %d candidates", offset, len(offsets))
        return self.fetch(offset)
