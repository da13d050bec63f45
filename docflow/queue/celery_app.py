"""
Celery application factory.
"""

from __future__ import annotations

from celery import Celery

from docflow.core.config import Settings


def create_celery_app(settings: Settings, **overrides) -> Celery:
    """
    Build the Celery app for the job queue.

    ``overrides`` are applied last, e.g. ``task_always_eager=True`` with a
    ``memory://`` broker in tests.
    """
    app = Celery("docflow")
    app.config_from_object("docflow.queue.celeryconfig")
    app.conf.update(
        broker_url=settings.CELERY_BROKER_URL,
        result_backend=settings.CELERY_RESULT_BACKEND,
        worker_concurrency=settings.QUEUE_CONCURRENCY,
        broker_connection_timeout=settings.QUEUE_CONNECT_TIMEOUT,
    )
    if overrides:
        app.conf.update(**overrides)
    return app
