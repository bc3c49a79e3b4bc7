import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
PROJECT_ROOT = ROOT_DIR.parent
for path in (PROJECT_ROOT, ROOT_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

# The engine in database.py connects at import time; keep it off the working tree
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.gettempdir()) / 'feedr-import.db'}")

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import models.database  # noqa: F401
from app import app as main_app
from database import Base, get_db
from services.auth import create_access_token
from services.batches.app import app as batches_app
from services.billing.ledger import CreditLedger
from services.providers.registry import ProviderSet
from services.websocket_progress import websocket_manager
from services.worker.app import app as worker_app
from shared.utils import config as service_config

SERVICE_APPS = [main_app, batches_app, worker_app]

TEST_USER_ID = "user-test-1"


@pytest.fixture(scope="session")
def session_factory(tmp_path_factory: pytest.TempPathFactory) -> Callable[[], Generator]:
    """Create a SQLite session factory for tests."""
    db_dir = tmp_path_factory.mktemp("feedr-db")
    db_path = db_dir / "test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _session_generator() -> Generator:
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    _session_generator.sessionmaker = SessionLocal  # type: ignore[attr-defined]
    return _session_generator


@pytest.fixture
def db_session(session_factory: Callable[[], Generator]) -> Generator[Session, None, None]:
    yield from session_factory()


@pytest.fixture
def second_session(session_factory: Callable[[], Generator]) -> Generator[Session, None, None]:
    """An independent session, standing in for a concurrent worker."""
    yield from session_factory()


@pytest.fixture
def providers() -> ProviderSet:
    return ProviderSet.mock()


@pytest.fixture
def user_id() -> str:
    return TEST_USER_ID


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(TEST_USER_ID)}"}


@pytest.fixture
def funded_user(db_session: Session) -> str:
    """Test user holding 10,000 credits."""
    CreditLedger(db_session).add_credits(TEST_USER_ID, 10_000, description="Test top-up")
    return TEST_USER_ID


@pytest.fixture(autouse=True)
def test_environment(tmp_path: Path, session_factory: Callable[[], Generator]) -> Generator:
    """Configure dependency overrides and pipeline settings per-test, and empty the tables afterwards."""
    service_config.set("media_root", str(tmp_path / "media"))
    service_config.set("research_enabled", False)
    service_config.set_pipeline_config(
        {
            "billing": {"upsell_multiplier": 1.5, "enforce_quoted_charge": False},
            "worker": {
                "max_attempts": 3,
                "stuck_threshold_minutes": 20,
                "max_jobs_per_run": 10,
                "max_runtime_seconds": 55,
                "sweep_every_runs": 10,
                "video_poll_interval_seconds": 0,
                "video_delayed_after_seconds": 240,
                "video_poll_timeout_seconds": 900,
            },
        }
    )

    def _get_test_db():
        yield from session_factory()

    # Reset WebSocket manager between tests to avoid leakage
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(websocket_manager.reset())
    finally:
        loop.close()

    for service_app in SERVICE_APPS:
        service_app.dependency_overrides[get_db] = _get_test_db

    try:
        yield
    finally:
        for service_app in SERVICE_APPS:
            service_app.dependency_overrides.pop(get_db, None)
        service_config.load_pipeline_config()

        cleanup = session_factory.sessionmaker()  # type: ignore[attr-defined]
        try:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup.execute(table.delete())
            cleanup.commit()
        finally:
            cleanup.close()
