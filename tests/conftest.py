from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from utils.config import reload_settings

# Wednesday morning
NOW = datetime(2025, 10, 22, 9, 0, tzinfo=ZoneInfo("UTC"))
OWNER = "dr-lee"


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setenv("APP_TIMEZONE", "UTC")
    monkeypatch.setenv("AUTO_REMINDERS", "true")
    monkeypatch.setenv("REMINDER_LEAD_HOURS", "24")
    monkeypatch.setenv("DEFAULT_PROVIDER", "Alex")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
    reload_settings()
    yield tmp_path
    reload_settings()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def api():
    from main import app

    return TestClient(app)


@pytest.fixture
def auth_headers(api):
    resp = api.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}
