# pensive/feeds.py
"""
RSS/Atom subscriptions and the hourly poller.

Each poll is a conditional GET (ETag / Last-Modified). New entries go through
the Content Store like any other submission and get an ANALYZE_CONTENT job;
the analysis itself happens in the worker, not here. Podcast feeds (audio
enclosures or iTunes tags) store their episodes as source="podcast" with the
show and episode details kept in ContentItem.media.
A feed that keeps failing is switched off after MAX_FEED_ERRORS attempts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import feedparser
import httpx
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from .cache import Cache, CacheKeys
from .config import MAX_FEED_ERRORS
from .content_store import ContentStore
from .errors import FeedFetchError, NotFoundError
from .extraction import USER_AGENT, html_to_text
from .jobs import JobQueue
from .logging_setup import get_logger
from .models import Feed, JobType, as_utc, utcnow
from .store import SessionFactory

logger = get_logger("pensive.feeds")

MAX_ITEMS_PER_POLL = 10
MIN_FETCH_INTERVAL = 300
FEED_PREVIEW_TTL = 60 * 60
ITUNES_NS = "http://www.itunes.com/dtds/podcast-1.0.dtd"

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class FeedEntry:
    title: str
    link: str
    text: str
    published: Optional[datetime] = None
    guid: Optional[str] = None
    audio_url: Optional[str] = None
    duration_seconds: Optional[int] = None


@dataclass
class FeedResponse:
    not_modified: bool = False
    title: str = ""
    entries: List[FeedEntry] = field(default_factory=list)
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    description: str = ""
    image_url: Optional[str] = None
    is_podcast: bool = False


def _entry_datetime(e) -> Optional[datetime]:
    tt = e.get("published_parsed") or e.get("updated_parsed")
    if not tt:
        return None
    return datetime(*tt[:6], tzinfo=timezone.utc)


def parse_duration(value) -> Optional[int]:
    """itunes:duration is either plain seconds or [[HH:]MM:]SS."""
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        seconds = 0
        for part in raw.split(":"):
            seconds = seconds * 60 + int(float(part))
    except ValueError:
        return None
    return seconds


def _media_enclosure(e) -> Optional[str]:
    for enc in e.get("enclosures") or []:
        kind = (enc.get("type") or "").lower()
        if kind.startswith(("audio/", "video/")) and enc.get("href"):
            return enc["href"]
    return None


def parse_feed(body) -> FeedResponse:
    parsed = feedparser.parse(body)
    if parsed.bozo and not parsed.entries:
        raise ValueError(f"unparseable feed: {parsed.get('bozo_exception')!r}")

    entries = []
    for e in parsed.entries:
        audio = _media_enclosure(e)
        link = (e.get("link") or "").strip() or (audio or "")
        if not link:
            continue
        content = e.get("content") or []
        html = content[0].get("value", "") if content else (e.get("summary") or e.get("description") or "")
        title = (e.get("title") or "").strip() or "Untitled"
        entries.append(FeedEntry(
            title=title,
            link=link,
            text=html_to_text(html) or title,
            published=_entry_datetime(e),
            guid=e.get("id") or None,
            audio_url=audio,
            duration_seconds=parse_duration(e.get("itunes_duration")),
        ))

    meta = parsed.feed
    image = meta.get("image") or {}
    has_itunes = ITUNES_NS in (parsed.get("namespaces") or {}).values()
    return FeedResponse(
        title=meta.get("title", ""),
        entries=entries,
        description=html_to_text(meta.get("subtitle") or meta.get("description") or ""),
        image_url=image.get("href") or image.get("url"),
        is_podcast=has_itunes or any(en.audio_url for en in entries),
    )


def episode_media(entry: FeedEntry, show_title: str, platform: str = "rss") -> Dict[str, Any]:
    return {
        "platform": platform,
        "showTitle": show_title,
        "episodeId": entry.guid,
        "audioUrl": entry.audio_url,
        "durationSeconds": entry.duration_seconds,
        "publishedAt": entry.published.isoformat() if entry.published else None,
    }


class HttpFeedFetcher:
    """Conditional GET with httpx, parsing with feedparser."""

    def __init__(self, timeout: int = 15):
        self.timeout = timeout

    def fetch(self, url: str, etag: Optional[str] = None, last_modified: Optional[str] = None) -> FeedResponse:
        headers = {"User-Agent": USER_AGENT}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        try:
            with httpx.Client(follow_redirects=True, timeout=self.timeout) as client:
                r = client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise FeedFetchError(url, str(e) or type(e).__name__) from e

        if r.status_code == 304:
            return FeedResponse(not_modified=True, etag=etag, last_modified=last_modified)
        if r.status_code >= 400:
            raise FeedFetchError(url, f"HTTP {r.status_code}")

        try:
            resp = parse_feed(r.content)
        except ValueError as e:
            raise FeedFetchError(url, str(e)) from e
        resp.etag = r.headers.get("ETag")
        resp.last_modified = r.headers.get("Last-Modified")
        return resp


def feed_to_dict(f: Feed) -> Dict[str, Any]:
    return {
        "id": f.id,
        "url": f.url,
        "title": f.title,
        "kind": f.kind,
        "isActive": f.is_active,
        "fetchIntervalSeconds": f.fetch_interval_seconds,
        "lastFetchedAt": f.last_fetched_at.isoformat() if f.last_fetched_at else None,
        "itemCount": f.item_count,
        "errorCount": f.error_count,
        "lastError": f.last_error,
        "createdAt": f.created_at.isoformat(),
    }


class FeedService:
    def __init__(
        self,
        get_session: SessionFactory,
        content: ContentStore,
        queue: JobQueue,
        cache: Cache,
        fetcher=None,
        max_errors: int = MAX_FEED_ERRORS,
    ):
        self.get_session = get_session
        self.content = content
        self.queue = queue
        self.cache = cache
        self.fetcher = fetcher or HttpFeedFetcher()
        self.max_errors = max_errors

    # ---- Subscriptions ----

    def subscribe(self, user_id: str, url: str, title: Optional[str] = None, kind: Optional[str] = None) -> Tuple[Feed, bool]:
        """Returns (feed, created). Subscribing twice to the same URL returns the existing feed."""
        with self.get_session() as s:
            existing = s.exec(select(Feed).where(Feed.user_id == user_id, Feed.url == url)).first()
            if existing is not None:
                return existing, False

        title = (title or "").strip()
        if not title:
            preview = self._preview(url)
            title = preview.get("title") or url
            if kind is None and preview.get("podcast"):
                kind = "podcast"
        kind = kind or "rss"
        feed = Feed(user_id=user_id, url=url, title=title, kind=kind)
        with self.get_session() as s:
            s.add(feed)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                return s.exec(select(Feed).where(Feed.user_id == user_id, Feed.url == url)).one(), False

        logger.info("FEED_SUBSCRIBED", extra={"feed_id": feed.id, "url": url, "kind": kind})
        return feed, True

    def list_feeds(self, user_id: str) -> List[Feed]:
        with self.get_session() as s:
            return list(s.exec(
                select(Feed).where(Feed.user_id == user_id).order_by(col(Feed.created_at))
            ).all())

    def get_feed(self, user_id: str, feed_id: str) -> Feed:
        with self.get_session() as s:
            feed = s.get(Feed, feed_id)
        if feed is None or feed.user_id != user_id:
            raise NotFoundError("feed", feed_id)
        return feed

    def update_feed(
        self,
        user_id: str,
        feed_id: str,
        title: Optional[str] = None,
        is_active: Optional[bool] = None,
        fetch_interval_seconds: Optional[int] = None,
    ) -> Feed:
        with self.get_session() as s:
            feed = s.get(Feed, feed_id)
            if feed is None or feed.user_id != user_id:
                raise NotFoundError("feed", feed_id)
            if title is not None:
                feed.title = title.strip()
            if is_active is not None:
                feed.is_active = is_active
                if is_active:
                    # manual re-activation resets the error count
                    feed.error_count = 0
                    feed.last_error = None
            if fetch_interval_seconds is not None:
                if fetch_interval_seconds < MIN_FETCH_INTERVAL:
                    raise ValueError(f"fetch interval must be at least {MIN_FETCH_INTERVAL} seconds")
                feed.fetch_interval_seconds = fetch_interval_seconds
            s.add(feed)
            s.commit()
        return feed

    def unsubscribe(self, user_id: str, feed_id: str) -> None:
        with self.get_session() as s:
            feed = s.get(Feed, feed_id)
            if feed is None or feed.user_id != user_id:
                raise NotFoundError("feed", feed_id)
            s.delete(feed)
            s.commit()
        logger.info("FEED_UNSUBSCRIBED", extra={"feed_id": feed_id})

    # ---- Polling ----

    def due_feeds(self, now: Optional[datetime] = None) -> List[Feed]:
        now = as_utc(now or utcnow())
        with self.get_session() as s:
            active = s.exec(select(Feed).where(Feed.is_active == True).order_by(col(Feed.created_at))).all()  # noqa: E712
        return [
            f for f in active
            if f.last_fetched_at is None
            or as_utc(f.last_fetched_at) <= now - timedelta(seconds=f.fetch_interval_seconds)
        ]

    def poll_due_feeds(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = as_utc(now or utcnow())
        feeds = self.due_feeds(now)
        logger.info("FEED_POLL_START", extra={"due": len(feeds)})
        return [self.poll_feed(f, now) for f in feeds]

    def poll_feed_by_id(self, feed_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        with self.get_session() as s:
            feed = s.get(Feed, feed_id)
        if feed is None:
            raise NotFoundError("feed", feed_id)
        return self.poll_feed(feed, now)

    def poll_feed(self, feed: Feed, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = as_utc(now or utcnow())
        try:
            resp = self.fetcher.fetch(feed.url, feed.etag, feed.last_modified)
        except FeedFetchError as e:
            return self._record_failure(feed.id, e.reason, now)

        if resp.not_modified:
            self._record_success(feed.id, now, resp, stored=0, newest=None)
            logger.info("FEED_NOT_MODIFIED", extra={"feed_id": feed.id})
            return {"feedId": feed.id, "status": "not_modified", "items": 0}

        seen = as_utc(feed.last_item_seen_at)
        fresh = [e for e in resp.entries if seen is None or e.published is None or e.published > seen]
        fresh.sort(key=lambda e: e.published or _OLDEST, reverse=True)
        fresh = fresh[:MAX_ITEMS_PER_POLL]

        podcast = feed.kind == "podcast" or resp.is_podcast
        show = feed.title or resp.title
        stored = 0
        for entry in fresh:
            if podcast:
                result = self.content.store_content(
                    feed.user_id, entry.title, entry.link, entry.text, "podcast",
                    media=episode_media(entry, show),
                )
            else:
                result = self.content.store_content(feed.user_id, entry.title, entry.link, entry.text, "rss")
            if result.is_new:
                self.queue.enqueue(JobType.ANALYZE_CONTENT, {"contentId": result.content_id}, user_id=feed.user_id)
                stored += 1

        dated = [e.published for e in fresh if e.published is not None]
        self._record_success(feed.id, now, resp, stored=stored, newest=max(dated) if dated else None)
        logger.info(
            "FEED_POLLED",
            extra={"feed_id": feed.id, "entries": len(resp.entries), "new": stored, "podcast": podcast},
        )
        return {"feedId": feed.id, "status": "success", "items": stored}

    # ---- internals ----

    def _preview(self, url: str) -> Dict[str, Any]:
        key = CacheKeys.rss_feed(url)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            resp = self.fetcher.fetch(url)
        except FeedFetchError as e:
            logger.warning("FEED_PREVIEW_FAILED", extra={"url": url, "error": e.reason})
            return {}
        preview = {"title": resp.title, "entries": len(resp.entries), "podcast": resp.is_podcast}
        self.cache.set(key, preview, FEED_PREVIEW_TTL)
        return preview

    def _record_success(self, feed_id: str, now: datetime, resp: FeedResponse, stored: int, newest: Optional[datetime]) -> None:
        with self.get_session() as s:
            feed = s.get(Feed, feed_id)
            feed.last_fetched_at = now
            feed.error_count = 0
            feed.last_error = None
            if not resp.not_modified:
                feed.etag = resp.etag
                feed.last_modified = resp.last_modified
                if resp.title and not feed.title:
                    feed.title = resp.title
                if resp.is_podcast:
                    feed.kind = "podcast"
            feed.item_count += stored
            seen = as_utc(feed.last_item_seen_at)
            if newest is not None and (seen is None or newest > seen):
                feed.last_item_seen_at = newest
            s.add(feed)
            s.commit()

    def _record_failure(self, feed_id: str, reason: str, now: datetime) -> Dict[str, Any]:
        with self.get_session() as s:
            feed = s.get(Feed, feed_id)
            feed.last_fetched_at = now
            feed.error_count += 1
            feed.last_error = reason
            deactivated = feed.error_count >= self.max_errors
            if deactivated:
                feed.is_active = False
            s.add(feed)
            s.commit()
            errors = feed.error_count

        if deactivated:
            logger.warning("FEED_DEACTIVATED", extra={"feed_id": feed_id, "errors": errors, "error": reason})
            return {"feedId": feed_id, "status": "deactivated", "items": 0, "error": reason}
        logger.warning("FEED_FETCH_FAILED", extra={"feed_id": feed_id, "errors": errors, "error": reason})
        return {"feedId": feed_id, "status": "error", "items": 0, "error": reason}
