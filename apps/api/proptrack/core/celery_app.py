from celery import Celery

from proptrack.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "proptrack_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["proptrack.notifications.tasks"],
)
celery_app.conf.task_ignore_result = True
