"""Celery application factory"""
from celery import Celery

from slotkeeper.config.settings import get_settings


def create_celery_app() -> Celery:
    settings = get_settings()

    app = Celery(
        "slotkeeper",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["slotkeeper.tasks.email_tasks"],
    )
    app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_routes={
            "slotkeeper.tasks.email_tasks.*": {"queue": "notifications"},
        },
    )
    return app


celery_app = create_celery_app()
