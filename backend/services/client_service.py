# backend/services/client_service.py
import logging
import uuid
from typing import List, Optional

from services.errors import NotFoundError, ValidationError
from services.time_utils import now_iso
from utils.storage import data_path, locked, read_json_file, write_json_file

logger = logging.getLogger(__name__)

CLIENTS_FILE = "clients.json"
DEFAULT_COLOR = "#3b82f6"


def load_all_clients() -> List[dict]:
    return read_json_file(data_path(CLIENTS_FILE), default=[])


def save_all_clients(clients: List[dict]):
    write_json_file(data_path(CLIENTS_FILE), clients)


def list_clients(owner_uid: str) -> List[dict]:
    clients = [c for c in load_all_clients() if c.get("owner_uid") == owner_uid]
    return sorted(clients, key=lambda c: (c.get("name") or "").lower())


def get_client(owner_uid: str, client_id: str) -> dict:
    for c in load_all_clients():
        if c.get("id") == client_id and c.get("owner_uid") == owner_uid:
            return c
    raise NotFoundError("Client not found")


def create_client(owner_uid: str, name: str, email: str = "", phone: str = "",
                  color: Optional[str] = None, notes: str = "") -> dict:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name required")
    ts = now_iso()
    client = {
        "id": uuid.uuid4().hex,
        "name": name,
        "email": (email or "").strip(),
        "phone": (phone or "").strip(),
        "color": color or DEFAULT_COLOR,
        "notes": (notes or "").strip(),
        "owner_uid": owner_uid,
        "created_at": ts,
        "updated_at": ts,
    }
    with locked():
        clients = load_all_clients()
        clients.append(client)
        save_all_clients(clients)
    logger.info("Created client %s for %s", client["id"], owner_uid)
    return client


def update_client(owner_uid: str, client_id: str, changes: dict) -> dict:
    with locked():
        clients = load_all_clients()
        for i, c in enumerate(clients):
            if c.get("id") != client_id or c.get("owner_uid") != owner_uid:
                continue
            if changes.get("name") is not None:
                name = changes["name"].strip()
                if not name:
                    raise ValidationError("name required")
                c["name"] = name
            for key in ("email", "phone", "color", "notes"):
                if changes.get(key) is not None:
                    c[key] = changes[key].strip() if isinstance(changes[key], str) else changes[key]
            c["updated_at"] = now_iso()
            clients[i] = c
            save_all_clients(clients)
            return c
    raise NotFoundError("Client not found")


def delete_client(owner_uid: str, client_id: str) -> int:
    """Delete a client and every appointment booked for them. Returns the number of appointments removed."""
    from services.appointment_service import delete_appointments_for_client

    with locked():
        clients = load_all_clients()
        remaining = [c for c in clients if not (c.get("id") == client_id and c.get("owner_uid") == owner_uid)]
        if len(remaining) == len(clients):
            raise NotFoundError("Client not found")
        removed = delete_appointments_for_client(owner_uid, client_id)
        save_all_clients(remaining)
    logger.info("Deleted client %s and %d appointment(s)", client_id, removed)
    return removed
