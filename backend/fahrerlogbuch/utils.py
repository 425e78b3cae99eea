from __future__ import annotations

import base64
import re
from typing import Any, Iterable, List, Optional

_WHITESPACE = re.compile(r"\s+")


def normalize_license_plate(value: Any) -> Optional[str]:
    """Return a canonical plate: trimmed, upper case, single inner spaces."""
    if value is None:
        return None
    text = _WHITESPACE.sub(" ", str(value).strip()).upper()
    return text or None


def plate_search_key(value: str) -> str:
    return _WHITESPACE.sub("", value).upper()


def normalize_plate_selection(values: Iterable[Any]) -> List[str]:
    seen: set[str] = set()
    normalized: List[str] = []
    for value in values:
        candidate = normalize_license_plate(value)
        if not candidate or candidate in seen:
            continue
        normalized.append(candidate)
        seen.add(candidate)
    return normalized


def format_coordinates(latitude: float, longitude: float) -> str:
    return f"{latitude:.5f}, {longitude:.5f}"


def to_data_url(content: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def decode_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a base64 ``data:`` URI into its MIME type and raw bytes."""
    header, _, payload = data_url.partition(",")
    if not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URL")
    mime_type = header[len("data:") : -len(";base64")] or "application/octet-stream"
    return mime_type, base64.b64decode(payload, validate=True)
