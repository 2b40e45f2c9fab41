from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storeportal.api import create_app
from storeportal.config import Settings
from storeportal.database import Database


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "portal.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        session_secret="tests-secret-key",
        database_path=tmp_path / "portal.sqlite3",
    )


@pytest.fixture()
def delivered_resets() -> list:
    return []


@pytest.fixture()
def client(database: Database, settings: Settings, delivered_resets: list):
    def notifier(email, token, expires_at):
        delivered_resets.append((email, token, expires_at))

    app = create_app(database=database, settings=settings, reset_notifier=notifier)
    with TestClient(app) as test_client:
        yield test_client
