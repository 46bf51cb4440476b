# pensive/errors.py
from __future__ import annotations


class PensiveError(Exception):
    """Base class for errors the service raises on purpose."""


class NotFoundError(PensiveError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident


class NoContentError(PensiveError):
    """No analyzed content in the requested window; callers may render an empty-state digest instead."""

    def __init__(self, user_id: str, timeframe: str):
        super().__init__(f"No content available for {timeframe} digest")
        self.user_id = user_id
        self.timeframe = timeframe


class ContentFetchError(PensiveError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch content from {url}: {reason}")
        self.url = url
        self.reason = reason


class FeedFetchError(PensiveError):
    def __init__(self, url: str, reason: str):
        super().__init__(f"Feed fetch failed for {url}: {reason}")
        self.url = url
        self.reason = reason
