# backend/services/provider_service.py
import logging
import uuid
from typing import List, Optional

from services.errors import NotFoundError, ValidationError
from services.time_utils import now_iso
from utils.storage import data_path, locked, read_json_file, write_json_file

logger = logging.getLogger(__name__)

PROVIDERS_FILE = "providers.json"


def load_all_providers() -> List[dict]:
    return read_json_file(data_path(PROVIDERS_FILE), default=[])


def save_all_providers(providers: List[dict]):
    write_json_file(data_path(PROVIDERS_FILE), providers)


def list_providers(owner_uid: str) -> List[dict]:
    providers = [p for p in load_all_providers() if p.get("owner_uid") == owner_uid]
    return sorted(providers, key=lambda p: (p.get("name") or "").lower())


def get_provider(owner_uid: str, provider_id: str) -> dict:
    for p in load_all_providers():
        if p.get("id") == provider_id and p.get("owner_uid") == owner_uid:
            return p
    raise NotFoundError("Provider not found")


def create_provider(owner_uid: str, name: str, email: str = "", title: str = "", color: str = "") -> dict:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name required")
    ts = now_iso()
    provider = {
        "id": uuid.uuid4().hex,
        "name": name,
        "email": (email or "").strip(),
        "title": (title or "").strip(),
        "color": color or "",
        "owner_uid": owner_uid,
        "created_at": ts,
        "updated_at": ts,
    }
    with locked():
        providers = load_all_providers()
        providers.append(provider)
        save_all_providers(providers)
    return provider


def update_provider(owner_uid: str, provider_id: str, changes: dict) -> dict:
    with locked():
        providers = load_all_providers()
        for i, p in enumerate(providers):
            if p.get("id") != provider_id or p.get("owner_uid") != owner_uid:
                continue
            if changes.get("name") is not None:
                name = changes["name"].strip()
                if not name:
                    raise ValidationError("name required")
                p["name"] = name
            for key in ("email", "title", "color"):
                if changes.get(key) is not None:
                    p[key] = changes[key]
            p["updated_at"] = now_iso()
            providers[i] = p
            save_all_providers(providers)
            return p
    raise NotFoundError("Provider not found")


def delete_provider(owner_uid: str, provider_id: str) -> int:
    """Delete a provider; appointments keep their slot but lose the provider reference."""
    from services.appointment_service import detach_provider

    with locked():
        providers = load_all_providers()
        remaining = [p for p in providers if not (p.get("id") == provider_id and p.get("owner_uid") == owner_uid)]
        if len(remaining) == len(providers):
            raise NotFoundError("Provider not found")
        detached = detach_provider(owner_uid, provider_id)
        save_all_providers(remaining)
    logger.info("Deleted provider %s, detached from %d appointment(s)", provider_id, detached)
    return detached


def find_provider_by_name(owner_uid: str, name: Optional[str], default_name: str = "Alex") -> Optional[dict]:
    providers = list_providers(owner_uid)
    if not providers:
        return None
    if name:
        needle = name.strip().lower()
        for p in providers:
            if needle and needle in p["name"].lower():
                return p
    fallback = (default_name or "").strip().lower()
    if fallback:
        for p in providers:
            if fallback in p["name"].lower():
                return p
    return providers[0]
