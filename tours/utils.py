from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar
import re

import bleach

from .constants import SAFE_NAME_MAX_LENGTH

T = TypeVar("T")


def sanitize_text(text: str, allow_basic_formatting: bool = False) -> str:
    """
    Sanitize text input to prevent XSS attacks.

    Args:
        text: The text to sanitize
        allow_basic_formatting: If True, allows basic HTML tags like <b>, <i>, <br>

    Returns:
        Sanitized text string
    """
    if not text:
        return ""

    if allow_basic_formatting:
        allowed_tags = ['b', 'i', 'u', 'br', 'p', 'strong', 'em']
    else:
        allowed_tags = []

    cleaned = bleach.clean(
        text,
        tags=allowed_tags,
        attributes={},
        strip=True
    )

    # Additional validation: limit length to prevent DoS
    max_length = 10000
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]

    return cleaned.strip()


def safe_filename(name: str, fallback: str = "tour") -> str:
    """
    Turn a user-provided name into something usable inside an object path.
    Keeps letters, digits, dash and underscore; everything else becomes '_'.
    """
    cleaned = re.sub(r"[^a-zA-Z0-9\-_]", "_", sanitize_text(name or ""))
    cleaned = cleaned[:SAFE_NAME_MAX_LENGTH]
    return cleaned or fallback


def to_int(value: Any, default: int = 0) -> int:
    """Safely convert a value to int, returning default on failure."""
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return default


@dataclass
class BatchResult(Generic[T]):
    """
    Outcome of a best-effort batch: every item ends up in exactly one list.
    A failure of one item never prevents the others from being processed.
    """
    succeeded: list[T] = field(default_factory=list)
    failed: list[tuple[T, str]] = field(default_factory=list)

    def add_success(self, item: T) -> None:
        self.succeeded.append(item)

    def add_failure(self, item: T, error: Exception | str) -> None:
        self.failed.append((item, str(error)))

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def error_messages(self) -> list[str]:
        return [error for _, error in self.failed]
