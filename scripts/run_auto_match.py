"""
Manual auto-match trigger: matches one load from the command line.

Usage:
    python scripts/run_auto_match.py <load_id> [top_n]

Useful for exercising the engine without a Celery worker.  The per-load
Redis lock is still taken, so a running worker and this script never
match the same load at once.
"""

import asyncio
import json
import logging
import sys
import uuid

from freightmatch.config import settings
from freightmatch.matching_engine.engine import matching_engine


async def main(load_id: uuid.UUID, top_n: int | None):
    """Run auto-match for one load and print the report."""
    print(f"Starting auto-match for load {load_id}...")
    result = await matching_engine.run_auto_match(load_id, top_n=top_n)

    print("\n=== Auto-match Report ===")
    print(json.dumps(result, indent=2, default=str))
    if result.get("skipped"):
        print("\nSkipped: another worker holds the lock for this load")
        return
    print(f"\nMatches created: {result['total_matches']}")
    print(f"Skipped: {len(result['skipped'])}")
    print(f"Failed: {len(result['failed'])}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main(uuid.UUID(sys.argv[1]), int(sys.argv[2]) if len(sys.argv) > 2 else None))
