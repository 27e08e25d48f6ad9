"""
Periodic subscription sweeps.

Scheduled by Celery beat (see tenancy.core.celery_app). Each task runs the
same lifecycle code the admin endpoints call.
"""

import logging

from tenancy.core.celery_app import celery_app, run_async
from tenancy.core.database import db_manager
from tenancy.core.metrics import task_duration_seconds, track_time
from tenancy.features.subscriptions.lifecycle import lifecycle_manager

logger = logging.getLogger(__name__)


@track_time(task_duration_seconds, {"task_name": "process_renewals"})
async def _process_renewals() -> int:
    async with db_manager.session() as db:
        return await lifecycle_manager.process_renewals(db)


@track_time(task_duration_seconds, {"task_name": "process_trial_expirations"})
async def _process_trial_expirations() -> int:
    async with db_manager.session() as db:
        return await lifecycle_manager.process_trial_expirations(db)


@celery_app.task(name="tenancy.features.subscriptions.tasks.process_renewals")
def process_renewals() -> dict:
    """Renew or expire subscriptions past their next billing date."""
    logger.info("Starting renewal sweep")
    processed = run_async(_process_renewals())
    return {"processed": processed}


@celery_app.task(name="tenancy.features.subscriptions.tasks.process_trial_expirations")
def process_trial_expirations() -> dict:
    """Convert or cancel trials past their trial end date."""
    logger.info("Starting trial expiration sweep")
    processed = run_async(_process_trial_expirations())
    return {"processed": processed}
