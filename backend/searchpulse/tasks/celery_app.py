from __future__ import annotations

import threading
import time

from celery import Celery
from celery.schedules import crontab
from celery.signals import task_postrun, task_prerun
from kombu import Queue

from searchpulse.core.config import get_settings
from searchpulse.core.metrics import celery_task_duration_seconds, tasks_in_progress
from searchpulse.db.redis_client import get_redis_client

SEARCH_SYNC_TASK_NAME = "search.sync_site"
SEARCH_SYNC_SCHEDULE_NAME = "search-sync-daily"

settings = get_settings()
_task_start_lock = threading.Lock()
_task_started_at: dict[str, float] = {}


def _queue_for_task_name(task_name: str | None) -> str:
    if task_name and task_name.startswith("search."):
        return "search_queue"
    return "default_queue"


@task_prerun.connect
def _record_task_start(task_id=None, **_kwargs) -> None:
    if not task_id:
        return
    task_name = getattr(_kwargs.get("task"), "name", None)
    with _task_start_lock:
        _task_started_at[task_id] = time.perf_counter()
    tasks_in_progress.labels(queue_name=_queue_for_task_name(task_name)).inc()


@task_postrun.connect
def _record_task_duration(task_id=None, task=None, **_kwargs) -> None:
    if not task_id:
        return
    with _task_start_lock:
        started_at = _task_started_at.pop(task_id, None)
    if started_at is None:
        return
    task_name = getattr(task, "name", None) or "unknown"
    queue_name = _queue_for_task_name(getattr(task, "name", None))
    tasks_in_progress.labels(queue_name=queue_name).dec()
    celery_task_duration_seconds.labels(task_name=task_name, queue_name=queue_name).observe(time.perf_counter() - started_at)


def build_beat_schedule(*, site_url: str, hour_utc: int) -> dict:
    """Daily sync of the configured property at ``hour_utc``:00 UTC."""
    return {
        SEARCH_SYNC_SCHEDULE_NAME: {
            "task": SEARCH_SYNC_TASK_NAME,
            "schedule": crontab(minute=0, hour=hour_utc),
            "kwargs": {"site_url": site_url, "trigger": "schedule"},
        }
    }


def create_celery_app() -> Celery:
    is_test_env = settings.app_env.lower() == "test"
    if not is_test_env:
        # Fail fast when Redis is unavailable in non-test environments.
        get_redis_client()

    if is_test_env:
        broker = "memory://"
        backend = "cache+memory://"
        task_always_eager = True
        task_eager_propagates = True
    else:
        broker = settings.celery_broker_url
        backend = settings.celery_result_backend
        task_always_eager = settings.celery_task_always_eager
        task_eager_propagates = settings.celery_task_eager_propagates

    celery = Celery("searchpulse", broker=broker, backend=backend)
    celery.conf.task_always_eager = task_always_eager
    celery.conf.task_eager_propagates = task_eager_propagates
    celery.conf.worker_prefetch_multiplier = 1
    celery.conf.task_default_queue = "default_queue"
    celery.conf.task_queues = (Queue("search_queue"), Queue("default_queue"))
    celery.conf.task_routes = {
        "search.*": {"queue": "search_queue"},
        "*": {"queue": "default_queue"},
    }
    celery.conf.timezone = "UTC"
    celery.conf.enable_utc = True
    celery.conf.beat_schedule = build_beat_schedule(
        site_url=settings.gsc_site_url, hour_utc=settings.sync_schedule_hour_utc
    )
    celery.autodiscover_tasks(["searchpulse.tasks"])
    return celery


celery_app = create_celery_app()
