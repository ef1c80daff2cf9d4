"""
Celery-backed job queue for the matching engine.

The engine only knows job kinds; this module maps them to task names
and submits them with ``send_task`` so the engine never imports task
modules.  Submission is fire-and-forget: broker errors are logged,
never raised.
"""

import logging

from freightmatch.matching_engine.errors import InvalidInput
from freightmatch.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

TASK_NAMES: dict[str, str] = {
    "notify_carrier": "freightmatch.tasks.notification_tasks.notify_carrier_of_match",
    "create_matches": "freightmatch.tasks.matching_tasks.create_matches_for_load",
}


class CeleryJobQueue:
    def __init__(self, app=None):
        self.app = app or celery_app

    def enqueue(self, job_kind: str, payload: dict) -> None:
        task_name = TASK_NAMES.get(job_kind)
        if task_name is None:
            raise InvalidInput(f"Unknown job kind: {job_kind!r}")
        try:
            self.app.send_task(task_name, kwargs=payload)
        except Exception:
            logger.exception("Failed to enqueue %s job: %s", job_kind, payload)


celery_job_queue = CeleryJobQueue()
