"""
Worker management utilities.
"""

import subprocess
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

CELERY_APP = "tenancy.core.celery_app"
DEFAULT_QUEUES = "subscriptions,notifications"


def start_worker(concurrency: int = 2, queues: str = DEFAULT_QUEUES):
    """Start a Celery worker consuming the sweep and notification queues."""
    cmd = [
        "celery", "-A", CELERY_APP,
        "worker",
        "--loglevel=info",
        f"--concurrency={concurrency}",
        f"--queues={queues}",
    ]

    print(f"Starting worker with command: {' '.join(cmd)}")
    subprocess.run(cmd)


def start_beat():
    """Start Celery beat (renewals, trial expirations, notification retries)."""
    cmd = [
        "celery", "-A", CELERY_APP,
        "beat",
        "--loglevel=info",
    ]

    print(f"Starting beat scheduler: {' '.join(cmd)}")
    subprocess.run(cmd)


def run_sweep(task: str):
    """Queue one sweep immediately."""
    from tenancy.core.celery_app import celery_app

    names = {
        "renewals": "tenancy.features.subscriptions.tasks.process_renewals",
        "trials": "tenancy.features.subscriptions.tasks.process_trial_expirations",
        "notifications": "tenancy.features.notifications.tasks.retry_failed_notifications",
    }
    result = celery_app.send_task(names[task])
    print(f"Queued {names[task]}: {result.id}")


def purge_queue(queue: str):
    """Purge all tasks from a queue."""
    cmd = [
        "celery", "-A", CELERY_APP,
        "purge",
        "-Q", queue,
        "-f",  # Force, no confirmation
    ]

    print(f"Purging queue: {queue}")
    subprocess.run(cmd)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Manage Celery workers")
    parser.add_argument("command", choices=["worker", "beat", "sweep", "purge"])
    parser.add_argument("--concurrency", type=int, default=2)
    parser.add_argument("--queues", default=DEFAULT_QUEUES)
    parser.add_argument("--sweep", choices=["renewals", "trials", "notifications"], default="renewals")
    parser.add_argument("--queue", default="subscriptions", help="Queue to purge")

    args = parser.parse_args()

    if args.command == "worker":
        start_worker(args.concurrency, args.queues)
    elif args.command == "beat":
        start_beat()
    elif args.command == "sweep":
        run_sweep(args.sweep)
    elif args.command == "purge":
        purge_queue(args.queue)
