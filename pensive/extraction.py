# pensive/extraction.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import re

import httpx
import trafilatura
from bs4 import BeautifulSoup

from .errors import ContentFetchError
from .logging_setup import get_logger

logger = get_logger("pensive.extraction")

MAX_TEXT_CHARS = 10000
USER_AGENT = "PensiveBot/1.0 (+https://github.com/pensive)"

_WS = re.compile(r"\s+")


@dataclass
class ExtractedPage:
    url: str
    title: str
    text: str


def _collapse(text: str) -> str:
    return _WS.sub(" ", text or "").strip()


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "header", "footer"]):
        tag.decompose()
    return _collapse(soup.get_text(" "))


def _title_from_soup(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    return h1.get_text(strip=True) if h1 else None


def extract_page(url: str, timeout: int = 15, client: Optional[httpx.Client] = None) -> ExtractedPage:
    """
    Fetch `url` and return its main text and title.
    Main text comes from trafilatura, falling back to BeautifulSoup's visible text.
    Raises ContentFetchError when the page can't be fetched or yields no text.
    """
    headers = {"User-Agent": USER_AGENT}
    try:
        if client is None:
            with httpx.Client(follow_redirects=True, timeout=timeout) as c:
                r = c.get(url, headers=headers)
        else:
            r = client.get(url, headers=headers)
        r.raise_for_status()
        html = r.text
    except httpx.HTTPStatusError as e:
        logger.warning("FETCH_HTTP_ERROR", extra={"url": url, "status": e.response.status_code})
        raise ContentFetchError(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.warning("FETCH_FAILED", extra={"url": url, "error": type(e).__name__})
        raise ContentFetchError(url, str(e) or type(e).__name__) from e

    text = trafilatura.extract(html, include_comments=False, favor_recall=True) or ""
    title = None
    md = trafilatura.extract_metadata(html)
    if md is not None and md.title:
        title = md.title

    text = _collapse(text)
    if not text:
        text = html_to_text(html)
    if not title:
        title = _title_from_soup(html)

    if not text:
        raise ContentFetchError(url, "no readable text")

    logger.info("FETCH_OK", extra={"url": url, "chars": len(text)})
    return ExtractedPage(url=url, title=title or url, text=text[:MAX_TEXT_CHARS])
