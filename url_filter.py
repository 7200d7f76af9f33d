"""Decide whether a WebSocket URL is the connection under test."""
from __future__ import annotations

import re
from typing import Optional, Pattern, Union

UrlFilter = Union[str, Pattern[str], None]


def matches(url: str, url_filter: UrlFilter) -> bool:
    """Return True if ``url`` passes ``url_filter``.

    ``None`` (or an empty string) accepts every URL, a string is a substring
    test and a compiled pattern is searched anywhere in the URL.
    """
    if url_filter is None or url_filter == "":
        return True
    if isinstance(url_filter, str):
        return url_filter in url
    if isinstance(url_filter, re.Pattern):
        return url_filter.search(url) is not None
    raise TypeError(f"Unsupported URL filter type: {type(url_filter).__name__}")


def describe_filter(url_filter: UrlFilter) -> Optional[str]:
    """Human-readable form of a filter for logs and error messages."""
    if url_filter is None or url_filter == "":
        return None
    if isinstance(url_filter, re.Pattern):
        return f"/{url_filter.pattern}/"
    return str(url_filter)


def build_filter(substring: Optional[str] = None, regex: Optional[str] = None) -> UrlFilter:
    """Build a filter from definition fields; a regex wins over a substring."""
    if regex:
        return re.compile(regex)
    return substring or None
