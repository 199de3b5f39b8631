"""Input validation for URL records.

All validators raise ``shortener.errors.ValidationError`` naming the offending
field, so they can run before any store or cache call is made.
"""

import re
from urllib.parse import urlsplit

import validators

from shortener.errors import ValidationError

__all__ = [
    "ALLOWED_SCHEMES",
    "RESERVED_WORDS",
    "CUSTOM_ID_MIN_LENGTH",
    "CUSTOM_ID_MAX_LENGTH",
    "validate_original_url",
    "validate_custom_id",
    "validate_description",
]

ALLOWED_SCHEMES = frozenset({"http", "https"})

# Path segments the HTTP surface already uses or keeps for itself
RESERVED_WORDS = frozenset(
    {"api", "health", "metrics", "docs", "redoc", "openapi", "admin", "www", "app", "dev", "stage", "prod"}
)

CUSTOM_ID_MIN_LENGTH = 3
CUSTOM_ID_MAX_LENGTH = 50

_CUSTOM_ID_PATTERN = re.compile(r"[A-Za-z0-9-]+")


def validate_original_url(raw: str | None, max_length: int = 2048) -> str:
    if not raw:
        raise ValidationError("original_url", "URL is required")
    if len(raw) > max_length:
        raise ValidationError("original_url", f"URL must be at most {max_length} characters")

    try:
        parsed = urlsplit(raw)
    except ValueError as exc:
        raise ValidationError("original_url", "Invalid URL format") from exc

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError("original_url", "URL must be http or https")
    if not parsed.hostname:
        raise ValidationError("original_url", "URL must have a valid host")
    if not validators.url(raw, simple_host=True, strict_query=False):
        raise ValidationError("original_url", "Invalid URL format")

    return raw


def validate_custom_id(raw: str) -> str:
    """Trim and check a caller-chosen identifier; returns the trimmed value."""
    custom_id = raw.strip()

    if not CUSTOM_ID_MIN_LENGTH <= len(custom_id) <= CUSTOM_ID_MAX_LENGTH:
        raise ValidationError(
            "custom_id",
            f"Custom ID must be between {CUSTOM_ID_MIN_LENGTH} and {CUSTOM_ID_MAX_LENGTH} characters",
        )
    if not _CUSTOM_ID_PATTERN.fullmatch(custom_id):
        raise ValidationError("custom_id", "Custom ID can only contain letters, numbers, and hyphens")
    if custom_id.lower() in RESERVED_WORDS:
        raise ValidationError("custom_id", f"Custom ID cannot use reserved word: {custom_id.lower()}")

    return custom_id


def validate_description(value: str | None, max_length: int = 255) -> str | None:
    if value is not None and len(value) > max_length:
        raise ValidationError("description", f"Description must be at most {max_length} characters")
    return value
