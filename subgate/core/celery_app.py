"""
Celery application: broker and result backend from settings.
Lifecycle sweeps live in subgate.lifecycle.tasks and run on beat.
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from subgate.core.config import settings

celery_app = Celery(
    "subgate",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "subgate.lifecycle.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    timezone="UTC",
    beat_schedule={
        "sweep-subscriptions": {
            "task": "subgate.lifecycle.tasks.sweep_subscriptions",
            "schedule": crontab(hour=0, minute=0),
        },
        "sweep-platform-subscriptions": {
            "task": "subgate.lifecycle.tasks.sweep_platform_subscriptions",
            "schedule": crontab(hour=0, minute=15),
        },
        "expire-pending-payments": {
            "task": "subgate.lifecycle.tasks.expire_pending_payments",
            "schedule": crontab(minute="*/30"),
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**_kwargs) -> None:
    from subgate.core.logging import configure_logging

    configure_logging("worker")
