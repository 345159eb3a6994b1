# backend/services/auth_service.py
import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from services.errors import ConflictError, ValidationError
from utils.config import get_settings
from utils.storage import data_path, locked, read_json_file, write_json_file

logger = logging.getLogger(__name__)

USERS_FILE = "users.json"
MIN_PASSWORD_LENGTH = 6

# session tokens in-memory, not persisted; a restart logs everyone out
_sessions = {}


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _load_users():
    path = data_path(USERS_FILE)
    with locked():
        if not path.exists():
            # default practice owner for a fresh install
            default = {"users": [{"username": "admin", "password_hash": _hash_password("admin123")}]}
            write_json_file(path, default)
        return read_json_file(path, default={"users": []}).get("users", [])


def authenticate(username: str, password: str) -> bool:
    h = _hash_password(password)
    for u in _load_users():
        if u.get("username") == username and secrets.compare_digest(u.get("password_hash", ""), h):
            return True
    return False


def register_user(username: str, password: str):
    username = (username or "").strip()
    if not username:
        raise ValidationError("username required")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    with locked():
        users = _load_users()
        if any(u.get("username") == username for u in users):
            raise ConflictError("username already taken")
        users.append({"username": username, "password_hash": _hash_password(password)})
        write_json_file(data_path(USERS_FILE), {"users": users})
    logger.info("Registered user %s", username)


def _prune_expired_tokens():
    now = datetime.now(timezone.utc)
    for token in [t for t, info in list(_sessions.items()) if info["expires"] < now]:
        _sessions.pop(token, None)


def create_session_token(username: str, ttl_minutes: Optional[int] = None) -> str:
    if ttl_minutes is None:
        ttl_minutes = get_settings().session_ttl_minutes
    _prune_expired_tokens()
    token = secrets.token_urlsafe(24)
    _sessions[token] = {
        "username": username,
        "expires": datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes),
    }
    return token


def user_for_token(token: str) -> Optional[str]:
    info = _sessions.get(token)
    if not info:
        return None
    if info["expires"] < datetime.now(timezone.utc):
        del _sessions[token]
        return None
    return info["username"]


def validate_token(token: str) -> bool:
    return user_for_token(token) is not None


def revoke_token(token: str):
    _sessions.pop(token, None)
