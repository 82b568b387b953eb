"""Celery application configuration."""
from celery import Celery
from app.config import settings

celery_app = Celery(
    "intelligence_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes max per task
    task_soft_time_limit=240,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result settings
    result_expires=3600,

    # Beat schedule for periodic tasks
    beat_schedule={
        "scan-risk-thresholds": {
            "task": "app.workers.tasks.scan_risk_thresholds",
            "schedule": settings.RISK_SCAN_INTERVAL_SECONDS,
        },
    },
)
