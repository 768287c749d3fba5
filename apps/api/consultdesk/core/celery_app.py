from celery import Celery

from consultdesk.core.config import get_settings

settings = get_settings()

celery_app = Celery("consultdesk_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(task_acks_late=True, task_default_queue="notifications")
