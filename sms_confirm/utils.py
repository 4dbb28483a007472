"""
Utility functions for the SMS confirmation service.
"""

import hmac
import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")
_DATE_ONLY = re.compile(r"^\d{4}-?\d{2}-?\d{2}$")


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from X-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature, body length: {len(body)} bytes")

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def verify_bearer_token(authorization: Optional[str], expected_token: Optional[str]) -> bool:
    """Check an `Authorization: Bearer <token>` header against the configured token."""
    if not authorization or not expected_token:
        return False
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    return hmac.compare_digest(token.strip(), expected_token)


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Canonicalise a phone number to E.164 (`+` followed by digits).

    Spaces, dashes and parentheses are dropped and a leading international
    `00` prefix becomes `+`. Numbers without any prefix are assumed to
    already carry their country code.
    """
    if raw is None:
        return None
    value = str(raw).strip()
    digits = _NON_DIGITS.sub("", value)
    if not digits:
        return None
    if not value.startswith("+") and digits.startswith("00"):
        digits = digits[2:]
    return f"+{digits}" if digits else None


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_provider_timestamp(date_part: Optional[str], time_part: Optional[str] = None) -> Optional[datetime]:
    """
    Parse the provider's date/time fields into naive UTC.

    Accepts a single ISO-8601 value (`2025-01-15T10:00:00Z`,
    `2025-01-15 10:00:00`) or separate `YYYY-MM-DD` and `HH:MM:SS` parts.
    Returns None when nothing parseable is supplied. A bare date is not a
    reply time (it would read as midnight), so it also returns None.
    """
    if not date_part:
        return None
    text = str(date_part).strip()
    if not time_part and _DATE_ONLY.match(text):
        logger.warning(f"Provider timestamp has no time of day: {text!r}")
        return None
    if time_part:
        text = f"{text} {str(time_part).strip()}"
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable provider timestamp: {text!r}")
        return None
    return to_utc_naive(parsed)
