from celery import Celery
from celery.schedules import crontab, schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "magazinify",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_always_eager=settings.celery_task_always_eager,
    task_default_queue="generation",
    task_queues=(
        Queue("generation"),
        Queue("scheduler"),
    ),
    task_routes={
        "workers.tasks.generate_issue": {"queue": "generation"},
        "workers.tasks.publish_due_issues": {"queue": "scheduler"},
        "workers.tasks.monthly_issue_activation": {"queue": "scheduler"},
        "workers.tasks.worker_heartbeat": {"queue": "scheduler"},
    },
    beat_schedule={
        "publish-due-issues-every-60s": {
            "task": "workers.tasks.publish_due_issues",
            "schedule": schedule(60.0),
            "options": {"queue": "scheduler"},
        },
        "monthly-issue-activation": {
            "task": "workers.tasks.monthly_issue_activation",
            "schedule": crontab(minute=0, hour=0, day_of_month=1),
            "options": {"queue": "scheduler"},
        },
        "worker-heartbeat-every-15s": {
            "task": "workers.tasks.worker_heartbeat",
            "schedule": schedule(15.0),
            "options": {"queue": "scheduler"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
