"""Weight-bracket token codec — the canonical in-memory prompt representation.

Prompts are comma-separated tag lists where bracket nesting encodes emphasis:

* ``{tag}`` raises the weight by one level, ``[tag]`` lowers it by one level.
* Levels stack: ``{{tag}}`` is depth 2, ``[[tag]]`` is depth -2.

``{`` and ``]`` both move the net weight upward (open an up-group or close a
down-group); ``}`` and ``[`` both move it downward.  A token records the depth
that was active when its last visible character was read.

Public API:

* ``parse_tokens(text)`` / ``TokenSequence.parse(text)`` — text → tokens.
* ``serialize_tokens(tokens)`` / ``TokenSequence.to_text()`` — tokens → text,
  emitting the minimal bracket transitions between neighbouring depths.
* ``TokenSequence`` — ordered container with the list surgery used by the
  pipeline (``remove``, ``extract``, ``reorder``, ``remove_duplicates``...).
"""
from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prompt_randomizer.tag_categories import TagCategories


ARTIST_PREFIX = "artist:"

# Legacy Danbooru spellings → tag names the NovelAI models were trained on.
NAI_STANDARD_RENAMES: dict[str, str] = {
    "v": "peace sign",
    "double v": "double peace",
    "| |": "bar eyes",
    r"\| |/": r"open \m/",
    ":|": "neutral face",
    ";|": "neutral face",
    "eyepatch bikini": "square bikini",
    "tachi-e": "character image",
}

_UP = frozenset("{]")
_DOWN = frozenset("}[")


@dataclass(frozen=True, slots=True)
class Token:
    """One tag and the weight depth it was captured at."""

    text: str
    depth: int = 0


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def parse_tokens(text: str, *, drop_trailing: bool = False) -> list[Token]:
    """Parse weight-bracket text into tokens.

    Parameters
    ----------
    text:
        Comma-separated prompt text.
    drop_trailing:
        Discard text after the last comma instead of emitting it as a final
        token.  Reproduces the legacy tokenizer for regression comparisons.

    Returns
    -------
    list[Token]
        Tokens in input order with whitespace trimmed; empty tokens removed.
    """
    tokens: list[Token] = []
    depth = 0
    buffer: list[str] = []
    pending_depth = 0

    for ch in text:
        if ch in _UP:
            depth += 1
        elif ch in _DOWN:
            depth -= 1
        elif ch == ",":
            tokens.append(Token("".join(buffer).strip(), pending_depth))
            buffer = []
            pending_depth = 0
        else:
            buffer.append(ch)
            # Padding around brackets must not move the token's depth
            if not ch.isspace():
                pending_depth = depth

    if buffer and not drop_trailing:
        tokens.append(Token("".join(buffer).strip(), pending_depth))

    return [t for t in tokens if t.text]


def serialize_tokens(tokens: Sequence[Token], *, close_groups: bool = False) -> str:
    """Serialize tokens back to weight-bracket text.

    Neighbouring tokens at the same depth are joined with ``", "``.  On a depth
    change the minimal run of brackets between the two depths is emitted, so
    ``a(0) b(1) c(-1)`` becomes ``"a, {b}, [c"``.

    The output is left open when the final token is weighted unless
    *close_groups* is set, in which case the closing brackets back to depth 0
    are appended.
    """
    out = ""
    depth = 0
    last = len(tokens) - 1

    for i, token in enumerate(tokens):
        if token.depth != depth:
            # Drop the ", " written after the previous token
            out = out[:-2]

            if token.depth > depth:
                for level in range(depth, token.depth):
                    if level < 0:
                        out += "]"
                        if level == token.depth - 1:
                            out += ", "
                    else:
                        if out and out[-1] != "{":
                            out += ", "
                        out += "{"
            else:
                for level in range(depth, token.depth, -1):
                    if level <= 0:
                        if out and out[-1] != "[":
                            out += ", "
                        out += "["
                    else:
                        out += "}"
                        if level == token.depth + 1:
                            out += ", "

            depth = token.depth

        out += token.text
        if i < last:
            out += ", "

    if close_groups and depth > 0:
        out += "}" * depth
    elif close_groups and depth < 0:
        out += "]" * -depth

    return out


# ---------------------------------------------------------------------------
# Token sequence
# ---------------------------------------------------------------------------

class TokenSequence:
    """Ordered, mutable sequence of ``Token``.

    Order is significant: it is the word order of the serialized prompt.
    Text-based operations compare exact (already trimmed) token text.
    """

    __slots__ = ("_tokens",)

    def __init__(self, tokens: Iterable[Token] = ()) -> None:
        self._tokens: list[Token] = list(tokens)

    @classmethod
    def parse(cls, text: str, *, drop_trailing: bool = False) -> TokenSequence:
        return cls(parse_tokens(text, drop_trailing=drop_trailing))

    @classmethod
    def from_texts(cls, texts: Iterable[str], depth: int = 0) -> TokenSequence:
        return cls(Token(t, depth) for t in texts if t.strip())

    # -- container protocol ------------------------------------------------

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[Token]:
        return iter(self._tokens)

    def __getitem__(self, index: int) -> Token:
        return self._tokens[index]

    def __contains__(self, text: object) -> bool:
        return any(t.text == text for t in self._tokens)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenSequence):
            return NotImplemented
        return self._tokens == other._tokens

    def __repr__(self) -> str:
        return f"TokenSequence({self._tokens!r})"

    def __str__(self) -> str:
        return self.to_text()

    # -- building ----------------------------------------------------------

    def append(self, text: str, depth: int = 0) -> None:
        self._tokens.append(Token(text, depth))

    def prepend(self, text: str, depth: int = 0) -> None:
        self._tokens.insert(0, Token(text, depth))

    def concat(self, other: TokenSequence) -> None:
        """Append every token of *other* (which is left unchanged)."""
        self._tokens.extend(other._tokens)

    def set_text(self, index: int, text: str) -> None:
        self._tokens[index] = replace(self._tokens[index], text=text)

    def texts(self) -> list[str]:
        """Token texts in order — the plain-list form accepted by ``remove``."""
        return [t.text for t in self._tokens]

    def to_text(self, *, close_groups: bool = False) -> str:
        return serialize_tokens(self._tokens, close_groups=close_groups)

    # -- list surgery ------------------------------------------------------

    def remove_duplicates(self) -> None:
        """Drop repeated texts, keeping the first occurrence of each."""
        seen: set[str] = set()
        kept: list[Token] = []
        for token in self._tokens:
            if token.text not in seen:
                seen.add(token.text)
                kept.append(token)
        self._tokens = kept

    def remove(self, texts: Iterable[str]) -> None:
        """Delete, for each listed text, the first remaining token with that text.

        A text listed twice removes two occurrences.  Pass another sequence as
        ``seq.texts()``.
        """
        positions: dict[str, deque[int]] = {}
        for idx, token in enumerate(self._tokens):
            positions.setdefault(token.text, deque()).append(idx)

        dropped: set[int] = set()
        for text in texts:
            queue = positions.get(text)
            if queue:
                dropped.add(queue.popleft())

        if dropped:
            self._tokens = [t for i, t in enumerate(self._tokens) if i not in dropped]

    def extract(
        self,
        items: Iterable[str],
        remove_extracted: bool = False,
        prefix: str = "",
    ) -> TokenSequence:
        """Collect tokens whose text matches one of *items*.

        Matches are gathered in the iteration order of *items*; tokens matching
        the same item keep their relative sequence order.  *prefix* is stripped
        from token text before comparison, so with ``prefix="artist:"`` the
        token ``artist:foo`` matches the item ``foo``.

        With *remove_extracted* the matched tokens are moved out of this
        sequence, otherwise they are copied.
        """
        index: dict[str, list[int]] = {}
        for idx, token in enumerate(self._tokens):
            index.setdefault(token.text.removeprefix(prefix), []).append(idx)

        picked: list[int] = []
        taken: set[int] = set()
        for item in items:
            for idx in index.get(item, ()):
                if remove_extracted and idx in taken:
                    continue
                picked.append(idx)
                taken.add(idx)

        extracted = TokenSequence(self._tokens[i] for i in picked)
        if remove_extracted and taken:
            self._tokens = [t for i, t in enumerate(self._tokens) if i not in taken]
        return extracted

    def keep_only(self, allowed: Iterable[str]) -> None:
        """Drop every token whose text is not in *allowed*."""
        allowed_set = frozenset(allowed)
        self._tokens = [t for t in self._tokens if t.text in allowed_set]

    def reorder(self, categories: TagCategories) -> None:
        """Rearrange into the canonical presentation order.

        count tags → character tags → copyright tags → artist tags (matched with
        or without ``artist:``) → everything else in original order → quality
        tags.
        """
        result = TokenSequence()
        result.concat(self.extract(categories.count, True))
        result.concat(self.extract(categories.character, True))
        result.concat(self.extract(categories.copyright, True))
        result.concat(self.extract(categories.artist, True, ARTIST_PREFIX))
        quality = self.extract(categories.quality, True)
        result.concat(self)
        result.concat(quality)
        self._tokens = result._tokens

    def nai_standard(self, artists: Iterable[str]) -> None:
        """Rename legacy tags and prefix bare artist names with ``artist:``."""
        artist_set = frozenset(artists)
        for i, token in enumerate(self._tokens):
            if token.text in NAI_STANDARD_RENAMES:
                self.set_text(i, NAI_STANDARD_RENAMES[token.text])
            elif token.text in artist_set:
                self.set_text(i, ARTIST_PREFIX + token.text)
