from celery import Celery

from zonecrm.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "zonecrm_api",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["zonecrm.audit.tasks"],
)
celery_app.conf.task_acks_late = True
