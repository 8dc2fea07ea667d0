"""Small string helpers for scraping page markup."""
import re
from typing import Pattern


def _index_of(haystack: str, needle: str | Pattern[str]) -> int:
    if isinstance(needle, re.Pattern):
        match = needle.search(haystack)
        return match.start() if match else -1
    return haystack.find(needle)


def between(haystack: str, left: str, right: str | Pattern[str]) -> str:
    """Return the text between ``left`` and the next ``right`` (string or regex).

    Returns an empty string when either side is missing.
    """
    pos = haystack.find(left)
    if pos == -1:
        return ""
    haystack = haystack[pos + len(left):]
    pos = _index_of(haystack, right)
    if pos == -1:
        return ""
    return haystack[:pos]


_BR_RE = re.compile(r"\s*<\s*br\s*/?\s*>\s*", re.IGNORECASE)
_PARAGRAPH_RE = re.compile(r"<\s*/\s*p\s*>\s*<\s*p[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<.*?>")


def strip_html(html: str | None) -> str:
    """Reduce an HTML fragment to its text, keeping line breaks."""
    if not html:
        return ""
    text = re.sub(r"[\n\r]", " ", html)
    text = _BR_RE.sub("\n", text)
    text = _PARAGRAPH_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    return text.strip()
