import os
os.environ["APP_ENV"] = "test"
if os.getenv("DATABASE_URL"):
    os.environ["POSTGRES_DSN"] = os.environ["DATABASE_URL"]

# THEN import anything else
import shutil
import tempfile
import time
import uuid
from collections.abc import Callable
from datetime import date, timedelta
from typing import Generator
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

import searchpulse.db.session as db_session_module
import searchpulse.tasks.tasks as tasks_module
from searchpulse.db.session import get_db
from searchpulse.schemas.search_metrics import PageMetricIn, QueryMetricIn
from searchpulse.services import metric_store

AS_OF = date(2026, 10, 19)


def _run_alembic_upgrade(backend_dir: Path, database_url: str) -> None:
    cfg = Config(str(backend_dir / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", database_url)
    os.environ["DATABASE_URL"] = database_url
    os.environ["POSTGRES_DSN"] = database_url
    command.upgrade(cfg, "head")


def pytest_configure(config: pytest.Config) -> None:
    workers = getattr(config.option, "numprocesses", None)
    if workers and int(workers) > 1:
        pytest.exit("SQLite test path does not support pytest-xdist parallel workers.")


@pytest.fixture(scope="session", autouse=True)
def apply_migrations() -> Generator[Path, None, None]:
    backend_dir = Path(__file__).resolve().parents[1]
    temp_dir = Path(tempfile.mkdtemp(prefix="pytest-db-"))
    template_db_path = temp_dir / f"template-{uuid.uuid4().hex}.sqlite3"
    database_url = f"sqlite:///{template_db_path.as_posix()}"
    os.environ["DATABASE_URL"] = database_url
    os.environ["POSTGRES_DSN"] = database_url

    from searchpulse.core.config import get_settings

    get_settings.cache_clear()
    db_session_module.reset_engine_state()
    _run_alembic_upgrade(backend_dir, database_url)
    # Keep the SQLite fast lane aligned with migration head.
    verification_engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30}, poolclass=NullPool)
    try:
        has_query_metrics = inspect(verification_engine).has_table("search_query_metrics")
    finally:
        verification_engine.dispose()
    if not has_query_metrics:
        raise RuntimeError("Alembic migration parity check failed; missing table: search_query_metrics")
    yield template_db_path
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope="session", autouse=True)
def bind_module_session_factories(apply_migrations: Path) -> Generator[None, None, None]:
    database_url = f"sqlite:///{apply_migrations.as_posix()}"
    bootstrap_engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30}, poolclass=NullPool)
    bootstrap_session_local = sessionmaker(bind=bootstrap_engine, autocommit=False, autoflush=False)

    db_session_module.bind_session_factory_for_tests(bootstrap_session_local)
    tasks_module.SessionLocal = db_session_module.SessionLocal

    # Import app after rebinding to avoid stale SessionLocal capture in route modules.
    import searchpulse.main  # noqa: F401

    yield
    bootstrap_engine.dispose()


@pytest.fixture()
def db_session(apply_migrations: Path) -> Generator[Session, None, None]:
    test_db_path = apply_migrations.parent / f"{uuid.uuid4().hex}.sqlite3"
    shutil.copy2(apply_migrations, test_db_path)
    database_url = f"sqlite:///{test_db_path.as_posix()}"
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )
    test_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    test_session = test_session_local()

    # Ensure eager Celery tasks read/write against the same committed test DB.
    db_session_module.bind_session_factory_for_tests(test_session_local)
    tasks_module.SessionLocal = db_session_module.SessionLocal

    yield test_session
    test_session.close()
    engine.dispose()
    db_session_module.reset_engine_state()
    for _ in range(5):
        try:
            test_db_path.unlink(missing_ok=True)
            break
        except PermissionError:
            time.sleep(0.05)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    from searchpulse.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def seed_keyword(db_session: Session) -> Callable[..., None]:
    """Write one row per day for ``days`` days ending the day before ``end``."""

    def _seed(
        keyword: str,
        *,
        position: float,
        impressions: int,
        ctr: float = 0.02,
        days: int = 10,
        end: date = AS_OF,
    ) -> None:
        rows = []
        for offset in range(1, days + 1):
            per_day = impressions // days + (1 if offset <= impressions % days else 0)
            rows.append(
                QueryMetricIn(
                    keyword=keyword,
                    date=end - timedelta(days=offset),
                    clicks=int(per_day * ctr),
                    impressions=per_day,
                    ctr=ctr,
                    position=position,
                )
            )
        metric_store.upsert_query_metrics(db_session, rows)
        db_session.commit()

    return _seed


@pytest.fixture()
def seed_page(db_session: Session) -> Callable[..., None]:
    def _seed(
        url: str,
        metric_date: date,
        *,
        content_id: str | None = None,
        position: float = 5.0,
        clicks: int = 10,
        impressions: int = 100,
    ) -> None:
        metric_store.upsert_page_metrics(
            db_session,
            [
                PageMetricIn(
                    url=url,
                    content_id=content_id,
                    date=metric_date,
                    clicks=clicks,
                    impressions=impressions,
                    ctr=clicks / impressions if impressions else 0.0,
                    position=position,
                )
            ],
        )
        db_session.commit()

    return _seed
