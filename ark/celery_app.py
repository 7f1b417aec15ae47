from celery import Celery

from ark.config import settings

celery_app = Celery("ark", include=["ark.tasks.reconcile"])
celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
)
celery_app.conf.beat_schedule = {
    "reconcile-instances": {
        "task": "ark.tasks.reconcile.reconcile_instances",
        "schedule": float(settings.reconcile_interval_seconds),
        # a pass that could not start in time is superseded by the next one
        "options": {"expires": float(settings.reconcile_interval_seconds)},
    },
}
