"""
General helper utilities shared by services and routes.

These functions are intentionally dependency-light so they can be reused
across services and routes without pulling in Flask app globals.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from datetime import date, datetime
from typing import Any
from urllib.parse import urlparse


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    """Clamp a value to an integer within [minimum, maximum]."""
    try:
        return max(minimum, min(maximum, int(value)))
    except (TypeError, ValueError):
        return default


def iso(value: Any) -> str | None:
    """Render a datetime/date as an ISO string; pass strings through."""
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


# ─────────────────────────────────────────────────────────────
# Image references
# ─────────────────────────────────────────────────────────────
_DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:image/")


def is_remote_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_image_reference(value: Any) -> bool:
    """True for http(s) URLs and data:image/... URLs."""
    return is_data_url(value) or is_remote_url(value)


def parse_data_url(data_url: str) -> tuple[str, str]:
    """
    Split a base64 image data URL into (mime_type, base64_payload).

    Raises:
        ValueError: If the string is not a base64 image data URL
    """
    match = _DATA_URL_RE.match(data_url or "")
    if not match:
        raise ValueError("Not a base64 image data URL")
    mime_type, payload = match.group(1), match.group(2).strip()
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return mime_type, payload


def to_data_url(b64_data: str, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{b64_data}"


def upstream_error_message(body: Any, fallback: str) -> str:
    """
    Pull a readable message out of a provider error body.

    Handles {"error": {"message": ...}}, {"error": "..."} and anything else
    (lists, strings, null) by returning the fallback.
    """
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else fallback
    if isinstance(error, str) and error.strip():
        return error
    return fallback


def short_ref(value: Any, max_len: int = 64) -> str:
    """Shorten an image reference for logs (data URLs are huge)."""
    s = str(value or "")
    if s.startswith("data:"):
        head = s.split(",", 1)[0]
        return f"{head},<{len(s)} chars>"
    return s if len(s) <= max_len else s[:max_len] + "…"


# ─────────────────────────────────────────────────────────────
# Debug logging
# ─────────────────────────────────────────────────────────────
_logger = logging.getLogger("propertyperfect.helpers")


def _mask_value(val: Any, max_len: int = 400) -> str:
    try:
        s = json.dumps(val, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        s = str(val)
    if len(s) > max_len:
        return s[:max_len] + "…"
    return s


def _scrub_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        cleaned = {}
        for k, v in data.items():
            key = str(k).lower()
            if any(t in key for t in ("key", "token", "secret", "auth")):
                cleaned[k] = "***"
            elif isinstance(v, str) and v.startswith("data:"):
                cleaned[k] = short_ref(v)
            else:
                cleaned[k] = _scrub_secrets(v)
        return cleaned
    if isinstance(data, list):
        return [_scrub_secrets(x) for x in data]
    return data


def log_event(event_name: str, data: dict) -> None:
    """Lightweight debug logging that avoids leaking secrets."""
    try:
        safe_payload = _scrub_secrets(data)
        _logger.info("[debug] %s :: %s", event_name, _mask_value(safe_payload))
    except Exception as e:
        _logger.warning("[debug] %s :: failed to log (%s)", event_name, e)


def log_db_continue(op: str, err: Exception) -> None:
    """Log DB errors that should not break the request flow."""
    _logger.warning("[DB] CONTINUE: %s failed: %s: %s", op, type(err).__name__, err)
    print(f"[DB] CONTINUE: {op} failed: {type(err).__name__}: {err}")
