# backend/services/session_service.py
import logging
import uuid
from datetime import timedelta
from typing import Optional

from services.time_utils import now_iso, now_local, parse_iso
from utils.config import get_settings
from utils.storage import data_path, locked, read_json_file, write_json_file

logger = logging.getLogger(__name__)

SESSIONS_FILE = "voice_sessions.json"
HISTORY_LIMIT = 10


def load_all_sessions() -> dict:
    return read_json_file(data_path(SESSIONS_FILE), default={})


def save_all_sessions(data: dict):
    write_json_file(data_path(SESSIONS_FILE), data)


def _prune_expired(sessions: dict) -> dict:
    """Drop sessions idle for longer than the session TTL."""
    cutoff = now_local() - timedelta(minutes=get_settings().session_ttl_minutes)
    live = {}
    for sid, s in sessions.items():
        touched = parse_iso(s.get("updated_at") or s.get("created_at"))
        if touched is not None and touched >= cutoff:
            live[sid] = s
    if len(live) != len(sessions):
        logger.info("Expired %d idle voice session(s)", len(sessions) - len(live))
    return live


def create_session(owner_uid: str, preferred_id: Optional[str] = None) -> dict:
    """
    Create a voice session. If preferred_id is already a session of this owner,
    that session is returned instead; another owner's id is never reused.
    """
    with locked():
        sessions = _prune_expired(load_all_sessions())
        sid = preferred_id or uuid.uuid4().hex
        existing = sessions.get(sid)
        if existing:
            if existing.get("owner_uid") == owner_uid:
                return existing
            sid = uuid.uuid4().hex
        ts = now_iso()
        sessions[sid] = {
            "id": sid,
            "owner_uid": owner_uid,
            "created_at": ts,
            "updated_at": ts,
            "history": [],  # [{role: user|assistant, content}]
            "pending": None,  # staged action awaiting confirm/cancel
            "last_request_type": None,
        }
        save_all_sessions(sessions)
        return sessions[sid]


def get_session(owner_uid: str, session_id: str) -> Optional[dict]:
    s = load_all_sessions().get(session_id)
    if not s or s.get("owner_uid") != owner_uid:
        return None
    return s


def update_session(session: dict) -> dict:
    session["updated_at"] = now_iso()
    with locked():
        sessions = _prune_expired(load_all_sessions())
        sessions[session["id"]] = session
        save_all_sessions(sessions)
    return session


def append_history(session: dict, role: str, content: str) -> dict:
    history = session.setdefault("history", [])
    history.append({"role": role, "content": content})
    session["history"] = history[-HISTORY_LIMIT:]
    return session


def set_pending(session: dict, pending: Optional[dict]) -> dict:
    session["pending"] = pending
    return session


def merge_pending(session: dict, kind: str, parameters: dict) -> dict:
    """Fold newly heard parameters into a staged action of the same kind."""
    pending = session.get("pending")
    if pending and pending.get("kind") == kind:
        merged = dict(pending.get("parameters") or {})
        merged.update({k: v for k, v in parameters.items() if v not in (None, "")})
        pending["parameters"] = merged
    else:
        pending = {"kind": kind, "parameters": dict(parameters)}
    session["pending"] = pending
    return session


def clear_pending(session: dict) -> dict:
    session["pending"] = None
    return session
