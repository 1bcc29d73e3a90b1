# src/main.py - v1
"""CLI entry point: run, sweep, status, dead-letters commands.

Usage:
    prospector run <items.json> --provider NAME=module:callable [...]
    prospector sweep
    prospector status <item_id> --steps a,b,c
    prospector dead-letters <file> [--requeue OUT]

``items.json`` is a list of ``{"id": ..., "prospect": {...}}`` objects.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable

from prospector.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        from prospector.config.settings import load_settings
        from prospector.logging.logger import configure_logging

        settings = load_settings(**_overrides(args))
        configure_logging(settings, args.verbose)
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="prospector",
        description=f"prospector v{__version__} - batch prospect research pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--state-root", type=Path, default=None,
        help="Directory for sqlite/json state backends",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Research a batch of prospects")
    p_run.add_argument("items", type=Path, help="JSON file with batch items")
    p_run.add_argument(
        "-p", "--provider", action="append", default=[], metavar="NAME=MODULE:CALLABLE",
        help="Provider step, in order (repeatable)",
    )
    p_run.add_argument(
        "--optional", action="append", default=[], metavar="NAME",
        help="Provider step whose failure does not fail the item (repeatable)",
    )
    p_run.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Write the batch result as JSON to this file",
    )
    p_run.add_argument(
        "--dead-letter-file", type=Path, default=None,
        help="Load and save the dead-letter set here",
    )
    p_run.add_argument(
        "-c", "--concurrency", type=int, default=None,
        help="Max concurrent items (default: from settings)",
    )
    p_run.set_defaults(func=_cmd_run)

    # --- sweep ---
    p_sweep = subparsers.add_parser("sweep", help="Delete expired ledger entries")
    p_sweep.set_defaults(func=_cmd_sweep)

    # --- status ---
    p_status = subparsers.add_parser("status", help="Show checkpoint status of an item")
    p_status.add_argument("item_id", help="Item id")
    p_status.add_argument(
        "--steps", required=True,
        help="Comma-separated step names, in pipeline order",
    )
    p_status.set_defaults(func=_cmd_status)

    # --- dead-letters ---
    p_dlq = subparsers.add_parser("dead-letters", help="Inspect a dead-letter file")
    p_dlq.add_argument("file", type=Path, help="Dead-letter JSON file")
    p_dlq.add_argument(
        "--requeue", type=Path, default=None, metavar="OUT",
        help="Mark pending entries retried and write them as an items file",
    )
    p_dlq.set_defaults(func=_cmd_dead_letters)

    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.state_root is not None:
        overrides["state_root"] = args.state_root
    if getattr(args, "concurrency", None):
        overrides["max_concurrent_items"] = args.concurrency
    return overrides


def load_callable(target_ref: str) -> Callable:
    """Resolve ``module:attribute`` to a callable."""
    module_name, sep, attr = target_ref.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected MODULE:CALLABLE, got {target_ref!r}")
    target = getattr(importlib.import_module(module_name), attr)
    if not callable(target):
        raise ValueError(f"{target_ref} is not callable")
    return target


def parse_provider(value: str) -> tuple[str, str]:
    name, sep, target = value.partition("=")
    if not sep or not name or not target:
        raise ValueError(f"Expected NAME=MODULE:CALLABLE, got {value!r}")
    return name.strip(), target.strip()


async def _cmd_run(args: argparse.Namespace, settings) -> int:
    """Research every item in the items file."""
    from prospector.api.facade import build_pipeline
    from prospector.core.models import BatchItem
    from prospector.pipeline.dead_letter import DeadLetterSet
    from prospector.pipeline.steps import provider_step

    if not args.items.exists():
        logger.error("File not found: %s", args.items)
        return 1
    if not args.provider:
        logger.error("At least one --provider is required")
        return 1

    items = [
        BatchItem.model_validate(raw)
        for raw in json.loads(args.items.read_text(encoding="utf-8"))
    ]
    optional = set(args.optional)
    steps = []
    for value in args.provider:
        name, target = parse_provider(value)
        steps.append(
            provider_step(name, name, load_callable(target), required=name not in optional)
        )

    dead_letters = (
        DeadLetterSet.load(args.dead_letter_file) if args.dead_letter_file else DeadLetterSet()
    )
    pipeline = build_pipeline(steps, settings=settings, dead_letters=dead_letters)
    pipeline.add_items(items)
    try:
        result = await pipeline.start()
    finally:
        pipeline.close()
        if args.dead_letter_file:
            dead_letters.save(args.dead_letter_file)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(result.model_dump_json(indent=2), encoding="utf-8")

    print(f"\nBatch {result.batch_id} {result.status}:")
    print(f"  Done:           {len(result.succeeded)}")
    print(f"  Errors:         {len(result.failed)}")
    print(f"  Skipped:        {len(result.skipped)}")
    print(f"  Dead-lettered:  {len(result.dead_letters)}")
    print(f"  Provider calls: {result.usage.total_calls}")
    print(f"  Duration:       {result.duration_ms / 1000:.1f}s")
    return 0 if not result.failed else 2


async def _cmd_sweep(args: argparse.Namespace, settings) -> int:
    """Delete expired idempotency records."""
    from prospector.api.facade import build_ledger

    ledger = build_ledger(settings)
    try:
        removed = await ledger.sweep()
    finally:
        ledger.store.close()
    print(f"Removed {removed} expired ledger entries")
    return 0


async def _cmd_status(args: argparse.Namespace, settings) -> int:
    """Print per-step checkpoint status for one item."""
    from prospector.api.facade import build_checkpoints

    steps = [s.strip() for s in args.steps.split(",") if s.strip()]
    checkpoints = build_checkpoints(settings, steps)
    try:
        records = await checkpoints.get(args.item_id)
        status = await checkpoints.completion_status(args.item_id)
    finally:
        checkpoints.store.close()

    print(f"\nItem {args.item_id}:")
    for record in records:
        suffix = f" ({record.error or record.reason})" if record.error or record.reason else ""
        print(f"  {record.step_name:<20} {record.status:<10} attempts={record.attempts}{suffix}")
    print(f"  Next step: {status.next_step or '-'}")
    return 0


async def _cmd_dead_letters(args: argparse.Namespace, settings) -> int:
    """Summarize a dead-letter file, optionally requeueing pending entries."""
    from prospector.pipeline.dead_letter import DeadLetterSet

    if not args.file.exists():
        logger.error("File not found: %s", args.file)
        return 1

    dead_letters = DeadLetterSet.load(args.file)
    stats = dead_letters.stats()
    print(f"\nDead letters in {args.file}:")
    print(f"  Total:       {stats.total}")
    print(f"  Pending:     {stats.pending}")
    print(f"  Retried:     {stats.retried}")
    print(f"  Skipped:     {stats.skipped}")
    print(f"  Manual fix:  {stats.manual_fix}")
    for error, count in stats.common_errors:
        print(f"  {count:>4}x {error}")

    if args.requeue:
        items = dead_letters.mark_for_retry()
        args.requeue.write_text(
            json.dumps([i.model_dump(mode="json") for i in items], indent=2),
            encoding="utf-8",
        )
        dead_letters.save(args.file)
        print(f"  Requeued {len(items)} item(s) to {args.requeue}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
