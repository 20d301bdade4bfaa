"""
Download Capability Tokens
HMAC-SHA256 signed, expiring capabilities for purchased artifacts
"""

import base64
import binascii
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from .config import get_settings
from .errors import GoneError, IntegrityViolation

settings = get_settings()

SAMPLE_PREFIX = "sample"


class DownloadCapability(BaseModel):
    """Verified contents of a download token"""
    kind: str  # "purchase" or "sample"
    resource_id: str
    subject_id: str  # beat id for purchases, owner id for samples
    expires_at: datetime


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload: str, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()


def format_expiry(expires_at: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix"""
    utc = expires_at.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_expiry(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sign_payload(payload: str, secret: Optional[str] = None) -> str:
    """Encode payload and append its base64url HMAC signature"""
    secret = secret or settings.DOWNLOAD_SIGNING_SECRET
    return _b64url_encode(payload.encode("utf-8")) + "." + _b64url_encode(_sign(payload, secret))


def mint_download_token(
    purchase_id,
    beat_id,
    expires_at: datetime,
    secret: Optional[str] = None
) -> str:
    """Mint a purchase download token: purchaseId:beatId:expiresAt"""
    return sign_payload(f"{purchase_id}:{beat_id}:{format_expiry(expires_at)}", secret)


def verify_download_token(
    token: str,
    now: Optional[datetime] = None,
    secret: Optional[str] = None
) -> DownloadCapability:
    """
    Verify signature and expiry of a download token.

    Raises IntegrityViolation for malformed or tampered tokens and
    GoneError once the expiry instant has passed.
    """
    secret = secret or settings.DOWNLOAD_SIGNING_SECRET
    now = now or datetime.now(timezone.utc)

    if not token or "." not in token:
        raise IntegrityViolation("Invalid token format")

    encoded_payload, _, signature = token.rpartition(".")

    try:
        payload = _b64url_decode(encoded_payload).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise IntegrityViolation("Invalid token encoding")

    # Compared in encoded form: decoding would ignore the spare bits of the last character
    expected = _b64url_encode(_sign(payload, secret))
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
        raise IntegrityViolation("Invalid or tampered token")

    parts = payload.split(":")
    if parts[0] == SAMPLE_PREFIX:
        if len(parts) < 4:
            raise IntegrityViolation("Invalid token payload")
        kind, resource_id, subject_id = "sample", parts[1], parts[2]
        expiry_raw = ":".join(parts[3:])
    else:
        if len(parts) < 3:
            raise IntegrityViolation("Invalid token payload")
        kind, resource_id, subject_id = "purchase", parts[0], parts[1]
        expiry_raw = ":".join(parts[2:])  # ISO timestamps contain colons

    expires_at = parse_expiry(expiry_raw)
    if expires_at is None or expires_at < now:
        raise GoneError("Download link has expired")

    return DownloadCapability(
        kind=kind,
        resource_id=resource_id,
        subject_id=subject_id,
        expires_at=expires_at
    )
