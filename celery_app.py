"""
Celery Application Configuration

Background processing for the NDR service: carrier status polling for
requests that are still pending at the carrier.

Usage:
    Start worker: celery -A celery_app worker --loglevel=info --concurrency=4
    Start beat:   celery -A celery_app beat --loglevel=info
"""

import os
from celery import Celery
from kombu import Queue
from dotenv import load_dotenv

load_dotenv()

# Redis configuration from environment variables
REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT = os.environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = os.environ.get("REDIS_PASSWORD", "")
REDIS_DB = os.environ.get("REDIS_DB", "0")

NDR_STATUS_POLL_SECONDS = float(os.environ.get("NDR_STATUS_POLL_SECONDS", "900"))

# Build Redis URL
if REDIS_PASSWORD:
    REDIS_URL = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"
else:
    REDIS_URL = f"redis://{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"

# Initialize Celery app
celery_app = Celery(
    "ndr_worker",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "modules.ndr.ndr_tasks",  # carrier status polling
    ],
)

# Celery Configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion (prevents task loss on worker crash)
    task_reject_on_worker_lost=True,  # Reject task if worker dies
    task_time_limit=600,  # 10 minutes hard timeout
    task_soft_time_limit=540,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,  # Restart worker after 100 tasks (prevents memory leaks)
    # Result backend settings
    result_expires=86400,  # Results expire after 24 hours
    # Queue configuration
    task_queues=(Queue("ndr", routing_key="ndr.#"),),
    task_default_queue="ndr",
    task_default_routing_key="ndr.default",
    # Retry settings
    task_default_retry_delay=60,  # 1 minute delay between retries
    task_max_retries=3,
    beat_schedule={
        "poll-pending-ndr-actions": {
            "task": "modules.ndr.ndr_tasks.poll_pending_ndr_actions",
            "schedule": NDR_STATUS_POLL_SECONDS,
        },
    },
)

celery_app.conf.task_routes = {
    "modules.ndr.ndr_tasks.*": {"queue": "ndr"},
}


def get_celery_app() -> Celery:
    """Get the configured Celery application instance."""
    return celery_app
