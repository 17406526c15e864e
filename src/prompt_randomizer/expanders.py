"""Text expansion passes run before tokenization.

* ``expand_dynamic_choices`` — ``<a|b|c>`` → one alternative.
* ``expand_wildcards`` — ``__name__`` → one line of a stored list.
* ``expand_prompt`` — dynamic → wildcard → dynamic, the order the pipeline
  uses so that wildcard bodies may introduce new dynamic groups.

Both passes are synchronous and pure apart from the random draws; pass a seeded
``random.Random`` for reproducible output.
"""
from __future__ import annotations

import random
import re

from prompt_randomizer.wildcards import WildcardStore


_WILDCARD_RE = re.compile(r"__.*?__")


def expand_dynamic_choices(prompt: str, rng: random.Random | None = None) -> str:
    """Resolve top-level ``<...|...>`` groups.

    Alternatives are split on ``|`` only at nesting depth one.  The chosen
    alternative replaces the whole group and scanning resumes at its start, so
    ``"<<a|b>|c>"`` yields ``a``, ``b`` or ``c`` in a single call.

    A ``>`` outside any group is literal; an unclosed ``<`` group is left as is.
    """
    rng = rng or random.Random()
    depth = 0
    start = 0
    buffer: list[str] = []
    options: list[str] = []

    i = 0
    while i < len(prompt):
        ch = prompt[i]
        if ch == "<":
            depth += 1
            if depth == 1:
                start = i
                buffer = []
                options = []
                i += 1
                continue
        elif ch == ">" and depth > 0:
            depth -= 1
            if depth == 0:
                options.append("".join(buffer))
                selected = rng.choice(options)
                prompt = prompt[:start] + selected + prompt[i + 1:]
                i = start
                buffer = []
                options = []
                continue
        elif ch == "|" and depth == 1:
            options.append("".join(buffer))
            buffer = []
            i += 1
            continue

        if depth > 0:
            buffer.append(ch)
        i += 1

    return prompt


def expand_wildcards(
    prompt: str,
    store: WildcardStore,
    rng: random.Random | None = None,
) -> str:
    """Replace each ``__name__`` found in *prompt* with a random stored line.

    Matches are located once on the input and replaced back-to-front, so
    replacement length never shifts a later match.  Text introduced by a
    replacement is not scanned again.  Unknown wildcards, and wildcards whose
    body has no non-blank line, stay in place.
    """
    rng = rng or random.Random()
    matches = list(_WILDCARD_RE.finditer(prompt))

    for match in reversed(matches):
        entries = store.entries(match.group(0))
        if not entries:
            continue
        selected = rng.choice(entries)
        prompt = prompt[:match.start()] + selected + prompt[match.end():]

    return prompt


def expand_prompt(
    prompt: str,
    store: WildcardStore,
    rng: random.Random | None = None,
) -> str:
    rng = rng or random.Random()
    prompt = expand_dynamic_choices(prompt, rng)
    prompt = expand_wildcards(prompt, store, rng)
    return expand_dynamic_choices(prompt, rng)
