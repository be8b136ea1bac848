from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from goldventory.config import Settings
from goldventory.logging_setup import configure_logging
from goldventory.management import init_database

EXPECTED_TABLES = {
    "threshold_documents",
    "inventory_documents",
    "weight_schemas",
    "purchase_orders",
    "order_lines",
    "stock_events",
}


def test_settings_validation() -> None:
    settings = Settings(database_url="sqlite+aiosqlite:///:memory:", log_level=" debug ")
    assert settings.log_level == "DEBUG"
    assert settings.order_name_format == "%d-%m-%Y %H:%M"
    assert settings.default_threshold is None

    with pytest.raises(ValidationError):
        Settings(database_url="sqlite+aiosqlite:relative.db")
    with pytest.raises(ValidationError):
        Settings(default_threshold=-1)


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEFAULT_THRESHOLD", "3")
    monkeypatch.setenv("ENVIRONMENT", "staging")

    settings = Settings()

    assert settings.default_threshold == 3
    assert settings.environment == "staging"


def test_configure_logging_is_idempotent() -> None:
    settings = Settings(log_level="WARNING", echo_sql=True)
    root = logging.getLogger()
    before = list(root.handlers)
    levels = root.level, logging.getLogger("sqlalchemy.engine").level
    try:
        configure_logging(settings)
        configure_logging(settings)
        added = [handler for handler in root.handlers if handler not in before]
        assert len(added) == 1
        assert root.level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(levels[0])
        logging.getLogger("sqlalchemy.engine").setLevel(levels[1])


async def test_init_database_creates_tables(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'init.db'}")
    try:
        await init_database(engine)
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()

    assert set(tables) >= EXPECTED_TABLES


INIT_SCRIPT = """
import asyncio, sys
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine
from goldventory.management import init_database

async def main(url):
    engine = create_async_engine(url)
    try:
        await init_database(engine)
        async with engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    finally:
        await engine.dispose()

print(",".join(sorted(asyncio.run(main(sys.argv[1])))))
"""


def test_init_database_creates_tables_in_a_fresh_interpreter(tmp_path) -> None:
    src = Path(__file__).resolve().parents[1] / "src"
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [str(src), os.environ.get("PYTHONPATH")]))}
    completed = subprocess.run(
        [sys.executable, "-c", INIT_SCRIPT, f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}"],
        check=True,
        capture_output=True,
        text=True,
        cwd=tmp_path,
        env=env,
    )

    tables = set(completed.stdout.strip().splitlines()[-1].split(","))
    assert tables >= EXPECTED_TABLES
