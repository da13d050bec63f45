"""
Celery worker entry point.

    celery -A docflow.worker worker -Q jobs --concurrency 3

Use the "sql" store backend with a separate worker process; the memory
backend is only visible inside the process that created it.
"""

from docflow.bootstrap import build_services
from docflow.core.config import settings
from docflow.core.logging import get_logger, setup_logging

setup_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)

services = build_services(settings)
if services.celery_app is None:
    raise RuntimeError("QUEUE_ENABLED is false; there is nothing for a worker to do")

app = services.celery_app

get_logger("worker").info(
    "Worker configured",
    concurrency=settings.QUEUE_CONCURRENCY,
    max_attempts=settings.QUEUE_MAX_ATTEMPTS,
    store=settings.STORE_BACKEND,
)
