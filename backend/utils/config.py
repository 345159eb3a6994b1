# backend/utils/config.py
"""
Runtime settings. Values come from the environment (a local .env is loaded
first); the OpenAI / ElevenLabs keys may also live in data/openai.json and
data/elevenlabs.json like earlier deployments did.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _load_json_cfg(path: Path) -> dict:
    if path.exists():
        try:
            return json.loads(path.read_text()) or {}
        except Exception:
            return {}
    return {}


@dataclass
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    timezone: str = "UTC"
    default_provider: str = "Alex"
    auto_reminders: bool = True
    reminder_lead_hours: int = 24
    workday_start_hour: int = 8
    workday_end_hour: int = 18
    session_ttl_minutes: int = 60 * 24
    log_level: str = "INFO"


def _build_settings() -> Settings:
    data_dir = Path(os.getenv("DATA_DIR") or DEFAULT_DATA_DIR)
    openai_cfg = _load_json_cfg(data_dir / "openai.json")
    eleven_cfg = _load_json_cfg(data_dir / "elevenlabs.json")

    origins = [o.strip() for o in (os.getenv("CORS_ORIGIN") or "*").split(",") if o.strip()]

    return Settings(
        data_dir=data_dir,
        openai_api_key=os.getenv("OPENAI_API_KEY") or openai_cfg.get("api_key") or None,
        openai_model=os.getenv("OPENAI_MODEL") or "gpt-4o",
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY") or eleven_cfg.get("api_key") or None,
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID") or eleven_cfg.get("voice_id") or "EXAVITQu4vr4xnSDxMaL",
        cors_origins=origins or ["*"],
        timezone=os.getenv("APP_TIMEZONE") or "UTC",
        default_provider=os.getenv("DEFAULT_PROVIDER") or "Alex",
        auto_reminders=_env_bool("AUTO_REMINDERS", True),
        reminder_lead_hours=_env_int("REMINDER_LEAD_HOURS", 24),
        workday_start_hour=_env_int("WORKDAY_START_HOUR", 8),
        workday_end_hour=_env_int("WORKDAY_END_HOUR", 18),
        session_ttl_minutes=_env_int("SESSION_TTL_MINUTES", 60 * 24),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = _build_settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = None
    return get_settings()
