"""Text canonicalization shared by every dedupe and matching pass."""
import re
from typing import Any

_NON_KEY_CHARS = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text_key(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace.

    "Infra Fund!" and "  infra   fund" both map to "infra fund".
    """
    if not text:
        return ""
    key = _NON_KEY_CHARS.sub("", text.strip().lower())
    return _WHITESPACE.sub(" ", key).strip()


def compact_text(value: Any, max_len: int) -> Any:
    """Trim, collapse whitespace and hard-truncate to `max_len` characters.

    Non-string values pass through untouched so schema validation can
    report them.
    """
    if not isinstance(value, str):
        return value
    compact = _WHITESPACE.sub(" ", value.strip())
    if len(compact) <= max_len:
        return compact
    return compact[:max_len].rstrip()


def slugify(text: str, max_len: int = 80, fallback: str = "") -> str:
    """Hyphenated slug of the normalized text key, cut to `max_len` chars."""
    key = normalize_text_key(text)[:max_len].strip()
    return key.replace(" ", "-") if key else fallback
