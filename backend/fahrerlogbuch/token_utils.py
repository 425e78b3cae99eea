from __future__ import annotations

import base64
import datetime as dt
import hashlib
import hmac
import os
from typing import Any, Dict, List, Optional, Tuple

from .config import settings
from .logger import get_logger
from .storage import SESSION_PREFIX, KeyValueStore, read_json, remove_key, session_key, write_json

logger = get_logger(__name__)


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def generate_token_value() -> str:
    raw = os.urandom(32)
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def token_hash(token: str) -> str:
    digest = hmac.new(settings.token_secret.encode(), msg=token.encode(), digestmod=hashlib.sha256)
    return digest.hexdigest()


PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 200_000


def password_hash(password: str, salt: Optional[str] = None, iterations: int = PASSWORD_ITERATIONS) -> str:
    """Salted PBKDF2 hash, stored as ``algorithm$iterations$salt$digest``."""
    salt = salt or os.urandom(16).hex()
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations)
    return f"{PASSWORD_ALGORITHM}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        algorithm, iterations, salt, _ = hashed.split("$")
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != PASSWORD_ALGORITHM:
        return False
    return hmac.compare_digest(password_hash(password, salt, rounds), hashed)


def create_session(
    store: KeyValueStore,
    username: str,
    roles: List[str],
    active_role: str,
) -> Tuple[Dict[str, Any], str]:
    purge_expired_sessions(store)
    token_value = generate_token_value()
    now = _now()
    record = {
        "username": username,
        "roles": list(roles),
        "active_role": active_role,
        "created_at": now.isoformat(),
        "expires_at": (now + dt.timedelta(hours=settings.session_ttl_hours)).isoformat(),
    }
    write_json(store, session_key(token_hash(token_value)), record)
    return record, token_value


def _is_expired(record: Dict[str, Any], now: dt.datetime) -> bool:
    expires_raw = record.get("expires_at")
    if not expires_raw:
        return False
    try:
        expires_at = dt.datetime.fromisoformat(expires_raw)
    except ValueError:
        return True
    return expires_at < now


def resolve_session(store: KeyValueStore, token_value: str) -> Optional[Dict[str, Any]]:
    key = session_key(token_hash(token_value))
    record = read_json(store, key, None)
    if not isinstance(record, dict) or not record.get("username"):
        return None
    if _is_expired(record, _now()):
        remove_key(store, key)
        return None
    return record


def purge_expired_sessions(store: KeyValueStore) -> int:
    now = _now()
    removed = 0
    for key in store.keys(SESSION_PREFIX):
        record = read_json(store, key, None)
        if isinstance(record, dict) and _is_expired(record, now):
            remove_key(store, key)
            removed += 1
    if removed:
        logger.info("Removed %d expired sessions", removed)
    return removed


def delete_session(store: KeyValueStore, token_value: str) -> None:
    remove_key(store, session_key(token_hash(token_value)))
