from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.database import build_session_factory
from app.pipeline import PipelineRunner


@pytest.fixture()
def temp_workspace(tmp_path: Path) -> Path:
    (tmp_path / "data" / "input").mkdir(parents=True, exist_ok=True)
    (tmp_path / "output").mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture()
def test_settings(temp_workspace: Path) -> Settings:
    return Settings(
        app_name="customer-intake",
        database_url=f"sqlite:///{temp_workspace / 'test.db'}",
        log_level="INFO",
        input_path=str(temp_workspace / "data" / "input" / "customers.txt"),
        output_dir=str(temp_workspace / "output"),
        export_batch_size=100000,
        export_malformed=True,
        max_upsert_retries=1,
        retry_backoff_seconds=0,
    )


@pytest.fixture()
def session_factory(test_settings: Settings) -> sessionmaker[Session]:
    return build_session_factory(test_settings.database_url)


@pytest.fixture()
def runner(test_settings: Settings, session_factory: sessionmaker[Session]) -> Generator[PipelineRunner, None, None]:
    pipeline_runner = PipelineRunner(test_settings, session_factory)
    yield pipeline_runner
    pipeline_runner.shutdown()
