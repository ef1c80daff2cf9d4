"""
Matching Celery tasks.

``create_matches_for_load`` is enqueued when a load is posted (or
re-posted) and runs the auto-match workflow for it.
"""

import asyncio
import logging
import uuid

from freightmatch.tasks.celery_app import celery_app
from freightmatch.matching_engine.engine import matching_engine

logger = logging.getLogger(__name__)


@celery_app.task(name="freightmatch.tasks.matching_tasks.create_matches_for_load")
def create_matches_for_load(load_id: str, top_n: int | None = None):
    """
    Auto-match a load with its best carriers.

    Celery tasks are synchronous, so we run the async engine
    in an event loop.
    """
    logger.info("Starting auto-match for load %s", load_id)
    loop = asyncio.new_event_loop()
    try:
        result = loop.run_until_complete(
            matching_engine.run_auto_match(uuid.UUID(str(load_id)), top_n=top_n)
        )
        if result.get("skipped"):
            return result
        logger.info(
            "Auto-match for load %s completed: %d matches created",
            load_id,
            result["total_matches"],
        )
        return result
    except Exception:
        logger.exception("Auto-match for load %s failed", load_id)
        raise
    finally:
        loop.close()
