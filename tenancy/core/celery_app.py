"""
Celery application configuration.

Celery handles:
- Periodic subscription sweeps (renewals, trial expirations)
- Retrying failed notifications
"""

import logging

from celery import Celery
from celery.signals import task_failure, task_success

from tenancy.config import settings

logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "tenancy",
    broker=str(settings.redis_url),
    backend=str(settings.redis_url),
    include=[
        "tenancy.features.subscriptions.tasks",
        "tenancy.features.notifications.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task execution
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task routing
    task_routes={
        "tenancy.features.subscriptions.tasks.*": {"queue": "subscriptions"},
        "tenancy.features.notifications.tasks.*": {"queue": "notifications"},
    },

    # Result backend
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Requeue if worker dies
    task_time_limit=900,  # Hard time limit: 15 minutes
    task_soft_time_limit=840,

    # Worker settings
    worker_prefetch_multiplier=1,  # Sweeps are long, don't hoard them
    worker_max_tasks_per_child=1000,

    # Retry settings
    task_default_max_retries=3,
    task_default_retry_delay=60,

    # Monitoring
    worker_send_task_events=True,
    task_send_sent_event=True,
)


# Task event handlers
@task_success.connect
def task_success_handler(sender=None, result=None, **kwargs):
    """Log successful task completion."""
    logger.info(f"Task succeeded: {sender.name} -> {result}")


@task_failure.connect
def task_failure_handler(sender=None, exception=None, **kwargs):
    """Log task failures."""
    logger.error(f"Task failed: {sender.name} - {exception}")


# Celery beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    "process-renewals": {
        "task": "tenancy.features.subscriptions.tasks.process_renewals",
        "schedule": 3600.0,  # Every hour
    },
    "process-trial-expirations": {
        "task": "tenancy.features.subscriptions.tasks.process_trial_expirations",
        "schedule": 3600.0,  # Every hour
    },
    "retry-failed-notifications": {
        "task": "tenancy.features.notifications.tasks.retry_failed_notifications",
        "schedule": 900.0,  # Every 15 minutes
    },
}


def run_async(coroutine):
    """
    Run an async task body on a fresh event loop.

    Worker processes have no running loop; each task gets its own and
    closes it when done.
    """
    import asyncio

    from tenancy.core.database import db_manager

    db_manager.init()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coroutine)
    finally:
        loop.run_until_complete(db_manager.close())
        loop.close()
