"""Celery application configuration."""

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from celery import Celery
from rfcoverage.core.config import settings

# Create Celery app
celery_app = Celery(
    "rf_coverage",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        'rfcoverage.tasks.coverage_task',
    ]
)

# Configure Celery
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    result_extended=True,

    # Timeouts
    task_time_limit=1800,
    task_soft_time_limit=1700,

    # Worker settings
    worker_prefetch_multiplier=1,  # Grid generation is CPU/GPU bound
    worker_max_tasks_per_child=10,

    # Task result expiration
    result_expires=86400,

    task_acks_late=True,
    task_reject_on_worker_lost=True,
)
