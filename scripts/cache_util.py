#!/usr/bin/env python3
"""
Persistent cache utilities - CLI tools for inspecting, seeding and clearing
the durable vector cache.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from replyguard.core.config import KNOWLEDGE_COLLECTION, get_persistent_cache, is_cache_enabled
from replyguard.vector.semantic_memory import SemanticMemoryService
from util.logging import logger


def _require_cache():
    if not is_cache_enabled():
        print("ERROR: Persistent cache disabled. Set CACHE_ENABLED=true")
        sys.exit(1)
    cache = get_persistent_cache()
    if not cache.available:
        print(f"ERROR: Durable store unavailable at {cache.store.db_path}")
        sys.exit(1)
    return cache


def stats_command(args):
    """Print the aggregate stats written with the last flush."""
    cache = _require_cache()
    stats = cache.get_stats()
    print(f"Total records: {stats.get('total', 0)}")
    print(f"Last update:   {stats.get('last_update') or 'never'}")
    for name, count in sorted(stats.get("collections", {}).items()):
        print(f"  {name}: {count}")


async def _seed(cache, entries, collection):
    service = SemanticMemoryService(cache=cache)
    await service.init([collection])
    ids = await service.load_knowledge(entries, collection)
    flushed = await service.flush([collection])
    return ids, flushed.get(collection, False)


def seed_command(args):
    """Embed knowledge entries from a JSON file and flush them to the cache."""
    cache = _require_cache()
    try:
        entries = json.loads(Path(args.path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"ERROR: Could not read knowledge file {args.path}: {e}")
        sys.exit(1)

    if not isinstance(entries, list):
        print("ERROR: Knowledge file must contain a JSON list of entries")
        sys.exit(1)

    print(f"Seeding {len(entries)} entries into '{args.collection}'...")
    try:
        ids, ok = asyncio.run(_seed(cache, entries, args.collection))
    except Exception as e:
        print(f"ERROR: Seeding failed: {e}")
        logger.error(f"CLI cache seed failed: {e}")
        sys.exit(1)

    print(f"✓ Indexed {len(ids)} entries")
    if not ok:
        print("WARNING: Flush to the durable store failed; entries were not persisted")
        sys.exit(1)
    print("✓ Flushed to durable store")


def clear_command(args):
    """Drop every persisted record."""
    cache = _require_cache()
    if not args.force:
        response = input("Clear the persistent vector cache? (yes/no): ").strip().lower()
        if response != "yes":
            print("Clear cancelled.")
            return
    if cache.clear():
        print("✓ Cache cleared")
    else:
        print("ERROR: Failed to clear cache")
        sys.exit(1)


def main():
    """Main CLI entry point for cache utilities."""
    parser = argparse.ArgumentParser(
        description="ReplyGuard persistent cache utilities",
        prog="python scripts/cache_util.py"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    stats_parser = subparsers.add_parser("stats", help="Show cache stats")
    stats_parser.set_defaults(func=stats_command)

    seed_parser = subparsers.add_parser("seed", help="Seed knowledge from a JSON file")
    seed_parser.add_argument("path", help="JSON list of {content, category, importance, source}")
    seed_parser.add_argument(
        "--collection",
        default=KNOWLEDGE_COLLECTION,
        help=f"Target collection (default: {KNOWLEDGE_COLLECTION})"
    )
    seed_parser.set_defaults(func=seed_command)

    clear_parser = subparsers.add_parser("clear", help="Clear the cache")
    clear_parser.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    clear_parser.set_defaults(func=clear_command)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
