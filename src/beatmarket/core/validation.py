"""
Input Validation
Sanitization, content filtering, pricing bounds and outbound URL safety
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

from .config import get_settings
from .errors import ValidationError

settings = get_settings()

# Instrumental-only catalogue: any vocal or lyric marker is rejected
VOCAL_TERMS_PATTERN = re.compile(
    r"\b(vocals?|singing|singer|lyric|lyrics|rapper|rapping|acapella|a\s*cappella"
    r"|choir|verse|hook|chorus|spoken\s*word)\b",
    re.IGNORECASE
)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

_TAG_PATTERN = re.compile(r"<[^>]*>")
_SCRIPT_SCHEME_PATTERN = re.compile(r"javascript:", re.IGNORECASE)
_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9 _@-]")

TITLE_MAX_LENGTH = 200
STYLE_MAX_LENGTH = 500
NEGATIVE_TAGS_MAX_LENGTH = 200

BLOCKED_HOST_SUFFIXES = (".local", ".internal", ".localhost")


def sanitize_text(value: Optional[str], max_length: int) -> str:
    """Strip markup and script schemes, trim, and cap length"""
    if not value:
        return ""
    cleaned = _TAG_PATTERN.sub("", str(value))
    cleaned = _SCRIPT_SCHEME_PATTERN.sub("", cleaned)
    return cleaned.strip()[:max_length]


def contains_vocal_terms(*values: str) -> bool:
    """Check free text for vocal/lyric markers"""
    return any(value and VOCAL_TERMS_PATTERN.search(value) for value in values)


def normalize_email(value: Optional[str]) -> str:
    """Validate and lowercase an email address"""
    email = (value or "").strip().lower()
    if not email or not EMAIL_PATTERN.match(email) or len(email) > 254:
        raise ValidationError("A valid email address is required")
    return email


def clamp_bpm(value) -> int:
    """Clamp tempo to 0..300; non-numeric input becomes 0"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, min(300, int(round(value))))


def round_price(value: float) -> float:
    """Round to currency minor units"""
    return round(float(value) * 100) / 100


def resolve_price_override(
    override,
    default: Optional[float],
    floor: float,
    ceiling: float,
    label: str
) -> Optional[float]:
    """
    Resolve a per-request price override against the agent default.

    An override within [floor, ceiling] wins (rounded to cents). An override
    above the ceiling is rejected. Anything else (missing, unparsable, below
    the floor) falls back to the default.
    """
    if override is None or isinstance(override, bool):
        return default

    try:
        parsed = float(override)
    except (TypeError, ValueError):
        return default

    if parsed != parsed:  # NaN
        return default
    if parsed > ceiling:
        raise ValidationError(f"{label} cannot exceed ${ceiling}")
    if parsed >= floor:
        return round_price(parsed)
    return default


def is_https_url(value) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme == "https" and bool(parsed.hostname)


def is_safe_media_url(value) -> bool:
    """
    Validate a media URL before the server fetches it.

    Only https is allowed; loopback, private, link-local and reserved
    addresses and internal host names are rejected.
    """
    if not is_https_url(value):
        return False

    host = (urlparse(value).hostname or "").lower().rstrip(".")
    if host == "localhost" or host.endswith(BLOCKED_HOST_SUFFIXES):
        return False

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True

    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def sanitize_filename_part(value: Optional[str]) -> str:
    return _FILENAME_UNSAFE.sub("", value or "").strip()


def build_filename_base(title: str, handle: str, genre: str, bpm: Optional[int]) -> str:
    """Build 'Title - handle - genre - NNNBPM' for download filenames"""
    parts = [
        sanitize_filename_part(title) or "Beat",
        sanitize_filename_part(handle) or "Unknown",
        sanitize_filename_part(genre) or "Unknown",
    ]
    if bpm and bpm > 0:
        parts.append(f"{bpm}BPM")
    return " - ".join(parts)
