import json
import logging
from datetime import UTC, date, datetime

from celery import Task

from searchpulse.core.config import get_settings
from searchpulse.core.logging_config import log_event
from searchpulse.db.session import SessionLocal
from searchpulse.models.task_execution import TaskExecution
from searchpulse.providers.errors import ProviderError
from searchpulse.providers.retry import RetryExhaustedError
from searchpulse.providers.search_analytics import FetchCancelledError
from searchpulse.services import sync_service
from searchpulse.tasks.celery_app import SEARCH_SYNC_TASK_NAME, celery_app

logger = logging.getLogger("searchpulse.tasks")


def _start_task_execution(db, site_url: str, task_name: str, trigger: str, payload: dict) -> TaskExecution:
    row = TaskExecution(
        site_url=site_url,
        task_name=task_name,
        trigger=trigger,
        status="running",
        payload_json=json.dumps(payload),
        result_json="{}",
    )
    db.add(row)
    # The sync rolls back failed stages; the execution row must already be durable by then.
    db.commit()
    return row


def _finish_task_execution(db, row: TaskExecution, status: str, result: dict) -> None:
    row.status = status
    row.result_json = json.dumps(result, default=str)
    row.updated_at = datetime.now(UTC)
    db.commit()


def _reason_code(exc: Exception) -> str:
    if isinstance(exc, ProviderError):
        return exc.reason_code
    if isinstance(exc, RetryExhaustedError):
        return "retry_exhausted"
    if isinstance(exc, FetchCancelledError):
        return "cancelled"
    return "internal_error"


def _task_failure_payload(task: Task, exc: Exception) -> dict:
    return {
        "error": str(exc),
        "error_type": exc.__class__.__name__,
        "reason_code": _reason_code(exc),
        "task_id": getattr(getattr(task, "request", None), "id", None),
    }


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


@celery_app.task(name=SEARCH_SYNC_TASK_NAME, bind=True)
def search_sync_site(
    self,
    site_url: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    trigger: str = "schedule",
) -> dict:
    site_url = site_url or get_settings().gsc_site_url
    db = SessionLocal()
    payload = {"site_url": site_url, "date_from": date_from, "date_to": date_to}
    execution = _start_task_execution(db, site_url, SEARCH_SYNC_TASK_NAME, trigger, payload)
    try:
        result = sync_service.run_sync(db, site_url, _parse_date(date_from), _parse_date(date_to))
        _finish_task_execution(db, execution, "success", result)
        return result
    except sync_service.SyncAlreadyRunningError as exc:
        result = {"status": "skipped", "site_url": exc.site_url, "reason": "sync_already_running"}
        log_event(logger, "search.sync.skipped", site_url=exc.site_url, locked_until=exc.locked_until)
        _finish_task_execution(db, execution, "skipped", result)
        return result
    except Exception as exc:
        db.rollback()
        _finish_task_execution(db, execution, "failed", _task_failure_payload(self, exc))
        raise
    finally:
        db.close()
