from celery import Celery
from app.core.config import settings

celery_app = Celery(
    "storefront",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.notification_tasks"]
)

# A broadcast is a handful of 500-token multicast calls, each bounded by the push timeout.
BROADCAST_SOFT_LIMIT = int(settings.NOTIFICATION_TIMEOUT_SECONDS * 20)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_soft_time_limit=BROADCAST_SOFT_LIMIT,
    task_time_limit=BROADCAST_SOFT_LIMIT + 30,

    # Broadcasts are few and slow; do not let one worker hoard them.
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,

    # Push fan-out is best effort; a lost broadcast is not redelivered.
    task_acks_late=False,
    task_ignore_result=False,
    result_expires=3600,

    task_default_queue="notifications",
)

celery_app.conf.task_routes = {
    "app.tasks.notification_tasks.*": {"queue": "notifications"},
}
