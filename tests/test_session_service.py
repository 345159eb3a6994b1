from datetime import datetime, timedelta, timezone

from services import auth_service
from services.session_service import (
    append_history,
    create_session,
    get_session,
    load_all_sessions,
    save_all_sessions,
    update_session,
)
from utils.config import reload_settings


def _age(session_id, minutes):
    sessions = load_all_sessions()
    stamp = (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat()
    sessions[session_id]["created_at"] = stamp
    sessions[session_id]["updated_at"] = stamp
    save_all_sessions(sessions)


def test_idle_sessions_expire(owner, monkeypatch):
    monkeypatch.setenv("SESSION_TTL_MINUTES", "30")
    reload_settings()
    stale = create_session(owner)
    fresh = create_session(owner)
    _age(stale["id"], 45)
    _age(fresh["id"], 10)

    create_session(owner)
    assert get_session(owner, stale["id"]) is None
    assert get_session(owner, fresh["id"]) is not None
    assert len(load_all_sessions()) == 2


def test_update_refreshes_and_prunes(owner):
    active = create_session(owner)
    abandoned = create_session(owner)
    _age(active["id"], 60 * 24 * 2)
    _age(abandoned["id"], 60 * 24 * 2)

    # an active session that is written again survives; the abandoned one goes
    session = get_session(owner, active["id"])
    update_session(append_history(session, "user", "hello"))
    assert get_session(owner, active["id"])["history"] == [{"role": "user", "content": "hello"}]
    assert get_session(owner, abandoned["id"]) is None


def test_expired_tokens_are_pruned_on_login():
    old = auth_service.create_session_token("admin", ttl_minutes=-1)
    assert old in auth_service._sessions
    auth_service.create_session_token("admin")
    assert old not in auth_service._sessions
