from __future__ import annotations

import re
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9]{6,})")
GOOGLE_KEY_PATTERN = re.compile(r"AIza[0-9A-Za-z_\-]{10,}")
QUERY_KEY_PATTERN = re.compile(r"([?&]key=)[^&\s]+")

SESSION_ID_PATTERN = re.compile(r"^session_\d+_[a-z0-9]+$")
SESSION_ID_MIN_LEN = 20
SESSION_ID_MAX_LEN = 50

_BASE36 = string.digits + string.ascii_lowercase


def redact_secrets(text: str) -> str:
    """Redact API keys or similar secrets from a string."""

    text = SECRET_PATTERN.sub("sk-***", text)
    text = GOOGLE_KEY_PATTERN.sub("AIza***", text)
    return QUERY_KEY_PATTERN.sub(r"\1***", text)


def sanitize_text(text: str, max_length: int) -> str:
    """Trim and clamp user-provided text to a safe length."""

    cleaned = text.strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned


def truncate_for_log(text: str, max_length: int = 80) -> str:
    cleaned = " ".join(str(text).split())
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[: max_length - 3] + "..."


@dataclass
class SessionIdValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


def generate_session_id(prefix: str = "session") -> str:
    """Return an id of the form ``session_<epoch-ms>_<9 base36 chars>``."""

    random_part = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{random_part}"


def validate_session_id(session_id: Optional[str]) -> SessionIdValidation:
    errors: list[str] = []
    if not session_id:
        errors.append("Session ID is required")
        return SessionIdValidation(is_valid=False, errors=errors)

    if not SESSION_ID_PATTERN.match(session_id):
        errors.append("Session ID has invalid format")
    if not SESSION_ID_MIN_LEN <= len(session_id) <= SESSION_ID_MAX_LEN:
        errors.append("Session ID has invalid length")
    if ".." in session_id or "/" in session_id or "\\" in session_id:
        errors.append("Session ID contains invalid characters")
    return SessionIdValidation(is_valid=not errors, errors=errors)


def normalize_session_id(value: Optional[str]) -> Optional[str]:
    """Return a trimmed session id, or None when it is missing or malformed."""

    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed if validate_session_id(trimmed).is_valid else None


def generate_unique_session_id(
    exists: Callable[[str], bool], max_attempts: int = 10
) -> str:
    """Generate a session id that ``exists`` does not already know about."""

    for _ in range(max_attempts):
        candidate = generate_session_id()
        if not exists(candidate):
            return candidate
    extra = "".join(secrets.choice(_BASE36) for _ in range(12))
    return f"session_{int(time.time() * 1000)}_{extra}fallback"
