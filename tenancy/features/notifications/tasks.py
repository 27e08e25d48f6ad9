"""
Notification outbox retries.
"""

import logging

from tenancy.core.celery_app import celery_app, run_async
from tenancy.core.database import db_manager
from tenancy.core.metrics import task_duration_seconds, track_time
from tenancy.features.notifications.service import MAX_DELIVERY_ATTEMPTS, notification_service

logger = logging.getLogger(__name__)


@track_time(task_duration_seconds, {"task_name": "retry_failed_notifications"})
async def _retry_failed_notifications(max_attempts: int) -> int:
    async with db_manager.session() as db:
        return await notification_service.retry_failed_notifications(db, max_attempts=max_attempts)


@celery_app.task(name="tenancy.features.notifications.tasks.retry_failed_notifications")
def retry_failed_notifications(max_attempts: int = MAX_DELIVERY_ATTEMPTS) -> dict:
    """Re-send FAILED notifications that have attempts left."""
    sent = run_async(_retry_failed_notifications(max_attempts))
    logger.info(f"Notification retry sweep re-sent {sent} messages")
    return {"sent": sent}
