from __future__ import annotations

import re
from urllib.parse import urlparse

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def clean_web_content(text: str) -> str:
    """Strip HTML tags and collapse whitespace."""
    return _WS_RE.sub(" ", _TAG_RE.sub("", text or "")).strip()


def sanitize_input(value: str | None) -> str:
    """Trim user-supplied identity fields and drop angle brackets."""
    return re.sub(r"[<>]", "", (value or "").strip())


def clean_url(value: str | None) -> str:
    """Reduce a website or handle to something usable inside a search query."""
    if not value:
        return ""
    value = value.strip()
    if is_valid_url(value):
        return urlparse(value).hostname or value
    return re.sub(r"^[\s@]+", "", value)

