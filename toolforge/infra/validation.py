"""Input validation and sanitization."""

import logging
import re
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
SLUG_PATTERN = re.compile(r"[^a-z0-9]+")

MAX_REQUEST_LENGTH = 4000


def validate_tenant_id(tenant_id: str) -> None:
    """
    Validate tenant_id format.

    Tenant ids are embedded in OAuth state tokens and storage keys, so they are
    restricted to letters, digits, hyphens and underscores.

    Raises:
        ValueError: If tenant_id is invalid
    """
    if not tenant_id or not isinstance(tenant_id, str):
        raise ValueError("tenant_id is required")
    if not TENANT_ID_PATTERN.match(tenant_id):
        raise ValueError("Invalid tenant_id format: letters, digits, '-' and '_' only (max 100)")


def slugify(value: str, default: str) -> str:
    """Lower-case kebab slug made of [a-z0-9-]; falls back to default when empty."""
    slug = SLUG_PATTERN.sub("-", (value or "").lower()).strip("-")
    return slug[:60] or default


def sanitize_request_text(content: str, max_length: int = MAX_REQUEST_LENGTH) -> str:
    """
    Sanitize a natural-language tool request before it reaches the reasoning service.

    Args:
        content: Raw request text
        max_length: Maximum allowed length

    Returns:
        Sanitized content
    """
    if not content:
        return ""

    if len(content) > max_length:
        logger.warning(f"Tool request truncated from {len(content)} to {max_length} characters")
        content = content[:max_length]

    # Remove control characters except newlines and tabs
    content = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '', content)

    return content.strip()


def as_string_list(value: Any, separator: Optional[str] = None) -> List[str]:
    """
    Coerce a JSON list-of-strings field from the reasoning service.

    A bare string is one item, or is split on the separator regex when one is
    given. Empty entries are dropped.

    Raises:
        ValueError: If value is neither a string nor a list
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(separator, value) if separator else [value]
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ValueError(f"expected a list of strings, got {type(value).__name__}")
    return [str(item).strip() for item in items if str(item).strip()]
