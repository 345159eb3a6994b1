# backend/utils/storage.py
# JSON document helpers shared by the services. Every document lives in the
# configured data directory.
import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from utils.config import get_settings

logger = logging.getLogger(__name__)

_lock = threading.RLock()


def data_path(name: str) -> Path:
    data_dir = get_settings().data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / name


def read_json_file(path: Path, default=None):
    if default is None:
        default = {}
    with _lock:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s, using empty document: %s", path.name, e)
            return default


def write_json_file(path: Path, content):
    with _lock:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(content, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


def locked():
    """Lock held across a read-modify-write of one or more documents."""
    return _lock
