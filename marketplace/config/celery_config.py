# marketplace/config/celery_config.py
"""Celery configuration, task routing and periodic schedule"""
from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from marketplace.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create and configure Celery application"""

    celery_app = Celery(
        "marketplace_booking",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    # Configure Celery
    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task routing
        task_routes={
            "marketplace.tasks.booking_tasks.*": {"queue": "bookings"},
            "marketplace.tasks.notification_tasks.*": {"queue": "notifications"},
            "marketplace.tasks.escrow_tasks.*": {"queue": "escrow"},
            "marketplace.tasks.recurring_tasks.*": {"queue": "maintenance"},
        },

        # Queue definitions
        task_queues=(
            Queue("bookings", routing_key="bookings"),
            Queue("notifications", routing_key="notifications"),
            Queue("escrow", routing_key="escrow"),
            Queue("maintenance", routing_key="maintenance"),
        ),

        # Periodic jobs
        beat_schedule={
            "release-due-escrow": {
                "task": "marketplace.tasks.escrow_tasks.release_due_escrow",
                "schedule": crontab(minute=0),
            },
            "auto-complete-bookings": {
                "task": "marketplace.tasks.booking_tasks.auto_complete_bookings",
                "schedule": crontab(minute=30),
            },
            "extend-recurring-horizon": {
                "task": "marketplace.tasks.recurring_tasks.extend_recurring_horizons",
                "schedule": crontab(hour=3, minute=0),
            },
        },

        # Worker settings
        worker_max_tasks_per_child=1000,
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        # Retry settings
        task_retry_max_retries=3,
        task_retry_delay=60,  # 1 minute

        broker_connection_retry_on_startup=True,
    )

    # Task modules loaded by the worker
    celery_app.conf.include = [
        "marketplace.tasks.booking_tasks",
        "marketplace.tasks.notification_tasks",
        "marketplace.tasks.escrow_tasks",
        "marketplace.tasks.recurring_tasks",
    ]

    return celery_app


# Create the Celery app instance
celery_app = create_celery_app()
