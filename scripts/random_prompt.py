#!/usr/bin/env python3
"""Assemble a randomized image-generation prompt.

Expands dynamic choices and wildcards in the beginning/search/end fragments,
picks a random corpus prompt matching the search tags, filters it, and prints
the assembled result as JSON to stdout.  Progress and errors go to stderr.

Data locations come from ``PROMPT_RANDOMIZER_*`` environment variables and can
be overridden with flags.

Usage::

    python3 scripts/random_prompt.py --search "1girl, solo, ~monochrome" \
        --beg "masterpiece" --end "best quality" --seed 7
    python3 scripts/random_prompt.py --config run.json --base-url ./mirror
"""
from __future__ import annotations

import argparse
import logging
import random
import sys
from dataclasses import replace
from pathlib import Path

import orjson

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from prompt_randomizer.errors import PromptRandomizerError
from prompt_randomizer.pipeline import PipelineResult, PromptPipeline
from prompt_randomizer.settings import PromptConfig, RandomizerSettings

log = logging.getLogger("random_prompt")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")
    sys.stdout.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Assemble a randomized prompt from fragments and the tag corpus."
    )
    parser.add_argument(
        "--config", type=Path, default=None,
        help="JSON file with prompt options (flags below override it)",
    )
    parser.add_argument("--beg", default=None, help="Beginning prompt fragment")
    parser.add_argument("--search", default=None, help="Search tags (~tag excludes)")
    parser.add_argument("--end", default=None, help="End prompt fragment")
    parser.add_argument("--negative", default=None, help="Negative prompt")
    parser.add_argument(
        "--no-search", action="store_true",
        help="Skip the corpus search entirely",
    )
    parser.add_argument("--remove-nsfw", action="store_true", help="Restrict search to rating:g")
    parser.add_argument("--reorder", action="store_true", help="Canonical tag ordering")
    parser.add_argument(
        "--naistandard", action="store_true",
        help="Rename legacy tags and prefix artists with artist:",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--base-url", default=None, help="Position table / corpus location")
    parser.add_argument("--tag-index", type=Path, default=None, help="Tag index JSON")
    parser.add_argument("--categories", type=Path, default=None, help="Category JSON directory")
    parser.add_argument("--wildcards", type=Path, default=None, help="Wildcard store")
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Per-request timeout in seconds",
    )
    parser.add_argument(
        "--workers", type=int, default=None,
        help="Concurrent position fetches",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def settings_from_args(args: argparse.Namespace) -> RandomizerSettings:
    settings = RandomizerSettings.from_env()
    overrides = {
        "base_url": args.base_url,
        "tag_index_path": args.tag_index,
        "categories_dir": args.categories,
        "wildcards_path": args.wildcards,
        "timeout": args.timeout,
        "max_workers": args.workers,
    }
    return replace(settings, **{k: v for k, v in overrides.items() if v is not None})


def config_from_args(args: argparse.Namespace) -> PromptConfig:
    config = PromptConfig.from_json(args.config) if args.config else PromptConfig()
    for attr, value in (
        ("prompt_beg", args.beg),
        ("prompt_search", args.search),
        ("prompt_end", args.end),
        ("negative", args.negative),
    ):
        if value is not None:
            setattr(config, attr, value)
    if args.no_search:
        config.search_disabled = True
    if args.remove_nsfw:
        config.remove_nsfw = True
    if args.reorder:
        config.reorder = True
    if args.naistandard:
        config.naistandard = True
    return config


def result_record(result: PipelineResult) -> dict[str, object]:
    return {
        "prompt": result.prompt,
        "negative": result.negative,
        "random_prompt": result.random_prompt,
        "candidates": result.candidates,
        "character_prompts": list(result.character_prompts),
    }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    settings = settings_from_args(args)
    if not settings.tag_index_path.exists():
        print(f"Error: tag index not found: {settings.tag_index_path}", file=sys.stderr)
        return 1

    try:
        config = config_from_args(args)
        with PromptPipeline.from_settings(
            settings,
            rng=random.Random(args.seed) if args.seed is not None else None,
        ) as pipeline:
            result = pipeline.run(config, on_progress=log.info)
    except (PromptRandomizerError, OSError, ValueError) as exc:
        # ValueError covers malformed JSON (orjson.JSONDecodeError) and bad store paths
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    dump_json(result_record(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
