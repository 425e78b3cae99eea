"""Key-value storage for the serialized JSON documents of the logbook.

Every collection (protocols of a user, vehicle registry, settings, ...) is a
single value that is rewritten as a whole on each change. Two backends exist:
a SQL table and a directory of JSON files.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from threading import RLock
from typing import Any, List, Optional
from urllib.parse import quote, unquote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logger import get_logger
from .models import StorageEntry

logger = get_logger(__name__)


USERS_KEY = "users_v1"
VEHICLES_KEY = "vehicles_v2"
COMPANY_SETTINGS_KEY = "company_settings_v1"
NOTIFICATION_SETTINGS_KEY = "notification_settings_v1"
DATABASE_SETTINGS_KEY = "database_settings_v1"
EMPLOYEES_KEY = "employees_v1"
CUSTOMERS_KEY = "customers_v1"
PLANNED_TOURS_KEY = "planned_tours_v1"


def protocols_key(username: str) -> str:
    return f"protocols_v3:{username}"


def active_tour_key(username: str) -> str:
    return f"active_tour:{username}"


def maintenance_mode_key(username: str) -> str:
    return f"maintenance_mode:{username}"


SESSION_PREFIX = "session:"


def session_key(token_hash: str) -> str:
    return f"{SESSION_PREFIX}{token_hash}"


class StorageError(RuntimeError):
    """Raised when a value cannot be written to or removed from the store."""


class KeyValueStore:
    """Minimal string key-value interface shared by all backends."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError


class SqlStore(KeyValueStore):
    def __init__(self, db: Session):
        self.db = db

    def get_item(self, key: str) -> Optional[str]:
        try:
            entry = self.db.get(StorageEntry, key)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read key {key!r}") from exc
        return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        try:
            entry = self.db.get(StorageEntry, key)
            if entry:
                entry.value = value
            else:
                self.db.add(StorageEntry(key=key, value=value))
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not write key {key!r}") from exc

    def remove_item(self, key: str) -> None:
        try:
            entry = self.db.get(StorageEntry, key)
            if entry:
                self.db.delete(entry)
                self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not remove key {key!r}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        try:
            rows = self.db.query(StorageEntry.key).filter(StorageEntry.key.startswith(prefix, autoescape=True)).all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not list keys with prefix {prefix!r}") from exc
        return [row.key for row in rows]


class JsonDirectoryStore(KeyValueStore):
    """One file per key; files are replaced atomically."""

    _lock = RLock()

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Could not read key {key!r}") from exc

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        with self._lock:
            try:
                fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except OSError as exc:
                raise StorageError(f"Could not write key {key!r}") from exc

    def remove_item(self, key: str) -> None:
        with self._lock:
            try:
                self._path(key).unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Could not remove key {key!r}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        try:
            names = [unquote(path.stem) for path in self.directory.glob("*.json")]
        except OSError as exc:
            raise StorageError(f"Could not list keys with prefix {prefix!r}") from exc
        return [name for name in names if name.startswith(prefix)]


def read_json(store: KeyValueStore, key: str, default: Any) -> Any:
    """Load a JSON document, falling back to ``default`` on any read problem."""
    try:
        raw = store.get_item(key)
    except StorageError:
        logger.exception("Storage read failed for %s", key)
        return default
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Stored value for %s is not valid JSON, using default", key)
        return default


def write_json(store: KeyValueStore, key: str, value: Any) -> None:
    try:
        store.set_item(key, json.dumps(value, ensure_ascii=False))
    except StorageError:
        logger.exception("Storage write failed for %s", key)
        raise


def remove_key(store: KeyValueStore, key: str) -> None:
    try:
        store.remove_item(key)
    except StorageError:
        logger.exception("Storage removal failed for %s", key)
        raise
