# pensive/podcasts.py
"""
Podcast links: which platform a URL belongs to, the show behind it (and its
RSS feed), its latest episodes, and the text of a single episode.

Episode text comes from, in order: a transcript linked from the show notes,
YouTube captions for YouTube videos, or the show notes themselves when they
are detailed enough. Audio is never transcribed here.
"""
from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .cache import Cache, CacheKeys
from .errors import ContentFetchError
from .extraction import MAX_TEXT_CHARS, USER_AGENT, html_to_text
from .feeds import FeedEntry, FeedResponse, episode_media, parse_feed
from .logging_setup import get_logger
from .models import as_utc

logger = get_logger("pensive.podcasts")

PLATFORMS = ("spotify", "apple", "youtube", "rss")
ITUNES_LOOKUP_URL = "https://itunes.apple.com/lookup"
YOUTUBE_CAPTIONS_URL = "https://www.youtube.com/api/timedtext"

MAX_EPISODES = 10
MIN_TRANSCRIPT_CHARS = 100
MIN_SHOW_NOTES_CHARS = 500
SHOW_INFO_TTL = 60 * 60

_TRANSCRIPT_LINK = re.compile(r"https?://[^\s\"'<>]*(?:transcript|\.txt|show-notes)[^\s\"'<>]*", re.I)
_FEED_TYPES = ("application/rss+xml", "application/atom+xml")


def detect_platform(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.endswith("spotify.com"):
        return "spotify"
    if host == "podcasts.apple.com":
        return "apple"
    if host.endswith("youtube.com") or host == "youtu.be":
        return "youtube"
    return "rss"


def extract_episode_id(url: str, platform: Optional[str] = None) -> Optional[str]:
    platform = platform or detect_platform(url)
    parsed = urlparse(url)
    if platform == "spotify":
        m = re.search(r"/episode/([A-Za-z0-9]+)", parsed.path)
        return m.group(1) if m else None
    if platform == "apple":
        # episode links carry ?i=<episode id>; show links only /id<show id>
        episode = parse_qs(parsed.query).get("i")
        if episode:
            return episode[0]
        m = re.search(r"/id(\d+)", parsed.path)
        return m.group(1) if m else None
    if platform == "youtube":
        if parsed.hostname == "youtu.be":
            return parsed.path.strip("/") or None
        v = parse_qs(parsed.query).get("v")
        if v:
            return v[0]
        m = re.search(r"/(?:embed|shorts)/([^/?#]+)", parsed.path)
        return m.group(1) if m else None
    return None


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def discover_feed_url(html: str, page_url: str) -> Optional[str]:
    """RSS/Atom <link> tags first, then a JSON-LD PodcastSeries webFeed."""
    soup = BeautifulSoup(html or "", "html.parser")
    for kind in _FEED_TYPES:
        link = soup.find("link", attrs={"type": kind})
        if link and link.get("href"):
            return urljoin(page_url, link["href"])

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        for item in data if isinstance(data, list) else [data]:
            if not isinstance(item, dict):
                continue
            if item.get("@type") == "PodcastSeries" and item.get("webFeed"):
                return urljoin(page_url, item["webFeed"])
            media = item.get("associatedMedia")
            if isinstance(media, dict) and media.get("@type") == "DataFeed" and media.get("encodingFormat") in _FEED_TYPES:
                href = media.get("contentUrl") or media.get("url")
                if href:
                    return urljoin(page_url, href)
    return None


def transcript_links(show_notes: str) -> List[str]:
    seen = []
    for url in _TRANSCRIPT_LINK.findall(show_notes or ""):
        url = url.rstrip(".,);")
        if url not in seen:
            seen.append(url)
    return seen


@dataclass
class ShowInfo:
    title: str
    description: str
    platform: str
    original_url: str
    rss_url: Optional[str] = None
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "platform": self.platform,
            "originalUrl": self.original_url,
            "rssUrl": self.rss_url,
            "imageUrl": self.image_url,
        }


@dataclass
class PodcastEpisode:
    title: str
    url: str
    show_title: str
    platform: str
    description: str = ""
    episode_id: Optional[str] = None
    published: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    audio_url: Optional[str] = None
    transcript: Optional[str] = None

    @classmethod
    def from_feed_entry(cls, entry: FeedEntry, show_title: str) -> "PodcastEpisode":
        return cls(
            title=entry.title,
            url=entry.link,
            show_title=show_title,
            platform="rss",
            description=entry.text,
            episode_id=entry.guid,
            published=entry.published,
            duration_seconds=entry.duration_seconds,
            audio_url=entry.audio_url,
        )

    @property
    def display_title(self) -> str:
        return f"{self.show_title}: {self.title}" if self.show_title else self.title

    def text(self) -> str:
        """Transcript, else show notes that are long enough to stand in for one."""
        if self.transcript:
            return self.transcript[:MAX_TEXT_CHARS]
        if len(self.description) >= MIN_SHOW_NOTES_CHARS:
            return self.description[:MAX_TEXT_CHARS]
        raise ContentFetchError(self.url, "no transcript or detailed show notes for this episode")

    def media(self) -> Dict[str, Any]:
        out = episode_media(
            FeedEntry(
                title=self.title,
                link=self.url,
                text="",
                published=self.published,
                guid=self.episode_id,
                audio_url=self.audio_url,
                duration_seconds=self.duration_seconds,
            ),
            self.show_title,
            platform=self.platform,
        )
        out["hasTranscript"] = bool(self.transcript)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "showTitle": self.show_title,
            "platform": self.platform,
            "description": self.description,
            "episodeId": self.episode_id,
            "publishedAt": self.published.isoformat() if self.published else None,
            "durationSeconds": self.duration_seconds,
            "audioUrl": self.audio_url,
            "hasTranscript": bool(self.transcript),
        }


class PodcastResolver:
    """Resolves podcast links over HTTP. Pass an httpx.Client to reuse connections (or to stub the network)."""

    def __init__(self, cache: Cache, client: Optional[httpx.Client] = None, timeout: int = 15):
        self.cache = cache
        self.client = client
        self.timeout = timeout

    # ---- Shows ----

    def show_info(self, url: str) -> ShowInfo:
        key = CacheKeys.podcast_show(url)
        cached = self.cache.get(key)
        if cached is not None:
            return ShowInfo(**cached)

        platform = detect_platform(url)
        r = self._get(url)
        feed = self._as_feed(r)
        if feed is not None:
            info = ShowInfo(
                title=feed.title or "Unknown Show",
                description=feed.description,
                platform=platform,
                original_url=url,
                rss_url=url,
                image_url=feed.image_url,
            )
        else:
            soup = BeautifulSoup(r.text, "html.parser")
            title = _meta(soup, "og:title") or (soup.title.string.strip() if soup.title and soup.title.string else "")
            image = _meta(soup, "og:image", "twitter:image")
            rss_url = discover_feed_url(r.text, url)
            if rss_url is None and platform == "apple":
                rss_url = self._itunes_feed_url(url)
            info = ShowInfo(
                title=title or "Unknown Show",
                description=_meta(soup, "og:description", "description") or "",
                platform=platform,
                original_url=url,
                rss_url=rss_url,
                image_url=urljoin(url, image) if image else None,
            )

        self.cache.set(key, asdict(info), SHOW_INFO_TTL)
        logger.info("PODCAST_SHOW_RESOLVED", extra={"url": url, "platform": platform, "has_feed": bool(info.rss_url)})
        return info

    def latest_episodes(
        self,
        url: str,
        since: Optional[datetime] = None,
        limit: int = MAX_EPISODES,
    ) -> Dict[str, Any]:
        info = self.show_info(url)
        if not info.rss_url:
            raise ValueError("Could not find an RSS feed for this podcast")

        feed = self._as_feed(self._get(info.rss_url))
        if feed is None:
            raise ContentFetchError(info.rss_url, "not a podcast feed")

        since = as_utc(since)
        entries = [e for e in feed.entries if since is None or (e.published is not None and e.published > since)]
        entries.sort(key=lambda e: e.published.timestamp() if e.published else 0, reverse=True)
        episodes = [PodcastEpisode.from_feed_entry(e, info.title) for e in entries[:max(1, limit)]]
        return {"show": info, "episodes": episodes}

    # ---- Episodes ----

    def episode(self, url: str) -> PodcastEpisode:
        platform = detect_platform(url)
        r = self._get(url)

        feed = self._as_feed(r)
        if feed is not None:
            # a feed URL stands for its newest episode
            if not feed.entries:
                raise ContentFetchError(url, "feed has no episodes")
            newest = max(feed.entries, key=lambda e: e.published.timestamp() if e.published else 0)
            ep = PodcastEpisode.from_feed_entry(newest, feed.title)
        else:
            soup = BeautifulSoup(r.text, "html.parser")
            title = _meta(soup, "og:title") or (soup.title.string.strip() if soup.title and soup.title.string else "")
            title = title or "Unknown Episode"
            ep = PodcastEpisode(
                title=title,
                url=url,
                show_title=self._show_title(platform, title, soup),
                platform=platform,
                description=_meta(soup, "og:description", "description") or "",
                episode_id=extract_episode_id(url, platform),
                audio_url=_meta(soup, "og:audio"),
            )

        ep.transcript = self._linked_transcript(ep.description)
        if ep.transcript is None and platform == "youtube" and ep.episode_id:
            ep.transcript = self._youtube_captions(ep.episode_id)

        logger.info(
            "PODCAST_EPISODE_RESOLVED",
            extra={"url": url, "platform": platform, "has_transcript": ep.transcript is not None},
        )
        return ep

    # ---- internals ----

    def _get(self, url: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT}
        try:
            if self.client is None:
                with httpx.Client(follow_redirects=True, timeout=self.timeout) as c:
                    r = c.get(url, params=params, headers=headers)
            else:
                r = self.client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ContentFetchError(url, str(e) or type(e).__name__) from e
        if r.status_code >= 400:
            raise ContentFetchError(url, f"HTTP {r.status_code}")
        return r

    @staticmethod
    def _as_feed(r: httpx.Response) -> Optional[FeedResponse]:
        ctype = r.headers.get("content-type", "").lower()
        if "html" in ctype:
            return None
        try:
            feed = parse_feed(r.content)
        except ValueError:
            return None
        if feed.entries or ("xml" in ctype and feed.title):
            return feed
        return None

    @staticmethod
    def _show_title(platform: str, title: str, soup: BeautifulSoup) -> str:
        if platform == "spotify" and ":" in title:
            return title.split(":", 1)[0].strip()
        if platform == "apple" and " - " in title:
            return title.split(" - ", 1)[0].strip()
        return _meta(soup, "og:site_name") or ""

    def _itunes_feed_url(self, url: str) -> Optional[str]:
        m = re.search(r"/id(\d+)", urlparse(url).path)
        if not m:
            return None
        try:
            data = self._get(ITUNES_LOOKUP_URL, params={"id": m.group(1), "entity": "podcast"}).json()
        except (ContentFetchError, ValueError) as e:
            logger.warning("ITUNES_LOOKUP_FAILED", extra={"url": url, "error": str(e)})
            return None
        for result in data.get("results") or []:
            if result.get("feedUrl"):
                return result["feedUrl"]
        return None

    def _linked_transcript(self, show_notes: str) -> Optional[str]:
        for link in transcript_links(show_notes):
            try:
                r = self._get(link)
            except ContentFetchError as e:
                logger.info("TRANSCRIPT_FETCH_FAILED", extra={"link": link, "error": e.reason})
                continue
            text = html_to_text(r.text)
            if len(text) >= MIN_TRANSCRIPT_CHARS:
                return text
        return None

    def _youtube_captions(self, video_id: str) -> Optional[str]:
        try:
            r = self._get(YOUTUBE_CAPTIONS_URL, params={"lang": "en", "v": video_id, "fmt": "srv3"})
        except ContentFetchError as e:
            logger.info("CAPTIONS_UNAVAILABLE", extra={"video_id": video_id, "error": e.reason})
            return None
        soup = BeautifulSoup(r.text, "html.parser")
        lines = [seg.get_text(" ", strip=True) for seg in soup.find_all(["p", "text"])]
        text = " ".join(line for line in lines if line)
        return text if len(text) >= MIN_TRANSCRIPT_CHARS else None
