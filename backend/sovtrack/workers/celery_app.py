"""
Celery Application Configuration
Queue-based execution of analyses and competitor syncs
"""

from celery import Celery
from kombu import Queue, Exchange

from sovtrack.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "sovtrack",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "sovtrack.workers.tasks.analysis_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Task execution settings
    task_acks_late=True,  # Acknowledge after task completion
    task_reject_on_worker_lost=True,
    task_time_limit=1800,  # a full analysis makes dozens of model calls
    task_soft_time_limit=1680,

    # Worker settings
    worker_prefetch_multiplier=1,  # Fair distribution
    worker_concurrency=2,

    # Retry settings
    task_default_retry_delay=30,

    # Queue configuration
    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("analysis", Exchange("analysis"), routing_key="analysis"),
        Queue("sync", Exchange("sync"), routing_key="sync"),
    ),

    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    # Route tasks to appropriate queues
    task_routes={
        "sovtrack.workers.tasks.analysis_tasks.run_brand_analysis": {"queue": "analysis"},
        "sovtrack.workers.tasks.analysis_tasks.rerun_analysis_session": {"queue": "analysis"},
        "sovtrack.workers.tasks.analysis_tasks.sync_brand_competitors": {"queue": "sync"},
    },
)
