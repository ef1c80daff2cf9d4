"""
Notification Celery tasks.

Builds the "new load opportunity" payload for a carrier once a match
has been offered.  Delivery channels (email, SMS, push) are not wired
up; the payload is logged.
"""

import asyncio
import logging
import uuid

from freightmatch.models.carrier import Carrier
from freightmatch.models.load import Load
from freightmatch.models.match import Match
from freightmatch.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _str_or_none(value):
    return None if value is None else str(value)


def build_notification_payload(match: Match, load: Load) -> dict:
    """JSON-safe payload describing the offered load."""
    return {
        "type": "new_load_opportunity",
        "match_id": str(match.id),
        "load_id": str(load.id),
        "load_reference": load.reference_number,
        "pickup_city": load.origin_city,
        "pickup_region": load.origin_region,
        "delivery_city": load.destination_city,
        "delivery_region": load.destination_region,
        "rate": _str_or_none(load.total_rate),
        "match_score": _str_or_none(match.match_score),
        "distance_to_pickup": _str_or_none(match.distance_to_pickup),
    }


async def _notify(match_id: uuid.UUID, session_factory=None) -> dict | None:
    if session_factory is None:
        from freightmatch.database import async_session
        session_factory = async_session

    async with session_factory() as session:
        match = await session.get(Match, match_id)
        if match is None:
            logger.error("Match not found: %s", match_id)
            return None
        load = await session.get(Load, match.load_id)
        carrier = await session.get(Carrier, match.carrier_id)

    payload = build_notification_payload(match, load)
    logger.info(
        "Notifying carrier %s about new load opportunity %s: %s",
        carrier.company_name if carrier else match.carrier_id,
        load.reference_number or load.id,
        payload,
    )
    return payload


@celery_app.task(name="freightmatch.tasks.notification_tasks.notify_carrier_of_match")
def notify_carrier_of_match(match_id: str):
    """Tell a carrier about a freshly offered match."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_notify(uuid.UUID(str(match_id))))
    except Exception:
        logger.exception("Error notifying carrier for match %s", match_id)
        raise
    finally:
        loop.close()
