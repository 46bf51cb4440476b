# pensive/digest.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from jinja2 import Template
from sqlmodel import col, select

from .cache import DIGEST_LIST_TTL, Cache, CacheKeys
from .config import APP_BASE_URL
from .content_store import ContentEntry, ContentStore, timeframe_cutoff
from .errors import NoContentError, NotFoundError
from .logging_setup import get_logger
from .models import Digest, as_utc, utcnow
from .store import SessionFactory

logger = get_logger("pensive.digest")

PRIORITY_RANK = {"deep-dive": 0, "read": 1, "skim": 2}
DEFAULT_TOP_N = 10
DUE_SLACK = timedelta(days=1)

DIGEST_TPL = Template("""
<h2>{{ heading }}</h2>
<p style="color:#666;font-size:13px;">{{ count }} item{{ '' if count == 1 else 's' }} from the last {{ period }}</p>
{% for it in items %}
  <div style="margin:12px 0;padding:10px;border:1px solid #eee;border-radius:8px;">
    <div style="font-size:16px;font-weight:600;"><a href="{{ it.url }}">{{ it.title }}</a></div>
    <div style="font-size:12px;color:#666;">
      <span style="text-transform:uppercase;">{{ it.priority }}</span>{% if it.source %} • {{ it.source }}{% endif %}
    </div>
    <p>{{ it.summary }}</p>
    {% if it.tags %}<div style="font-size:12px;color:#888;">{{ it.tags | join(', ') }}</div>{% endif %}
  </div>
{% endfor %}
{% if base_url %}<p style="font-size:12px;"><a href="{{ base_url }}/content">See everything you saved</a></p>{% endif %}
""", autoescape=True)

_PERIODS = {"weekly": "week", "monthly": "month", "quarterly": "quarter"}


def _summary_text(summary: Any) -> str:
    if isinstance(summary, dict):
        return summary.get("paragraph") or summary.get("sentence") or ""
    return str(summary or "")


def render_items_html(timeframe: str, items: List[Dict[str, Any]], base_url: Optional[str] = APP_BASE_URL) -> str:
    """Render already-ranked items ({title, url, priority, summary, tags, source}) as an HTML fragment."""
    rows = [
        {
            "title": it.get("title") or "Untitled",
            "url": it.get("url") or "",
            "priority": it.get("priority") or "read",
            "summary": _summary_text(it.get("summary")),
            "tags": list(it.get("tags") or []),
            "source": it.get("source") or "",
        }
        for it in items
    ]
    return DIGEST_TPL.render(
        heading=digest_title(timeframe),
        period=_PERIODS.get(timeframe, timeframe),
        count=len(rows),
        items=rows,
        base_url=base_url,
    ).strip()


def digest_title(timeframe: str) -> str:
    return f"Your {timeframe.capitalize()} Learning Digest"


def rank_entries(entries: List[ContentEntry]) -> List[ContentEntry]:
    # Two stable sorts: recency first, then priority on top of it
    ordered = sorted(entries, key=lambda e: (e.item.created_at, e.item.id), reverse=True)
    return sorted(ordered, key=lambda e: PRIORITY_RANK.get(e.analysis.priority if e.analysis else "", 3))


def digest_to_dict(d: Digest, include_html: bool = False) -> Dict[str, Any]:
    out = {
        "id": d.id,
        "type": d.type,
        "title": d.title,
        "status": d.status,
        "contentIds": list(d.content_ids or []),
        "scheduledAt": d.scheduled_at.isoformat() if d.scheduled_at else None,
        "sentAt": d.sent_at.isoformat() if d.sent_at else None,
        "createdAt": d.created_at.isoformat() if d.created_at else None,
    }
    if include_html:
        out["htmlContent"] = d.html_content
    return out


class DigestAggregator:
    def __init__(self, get_session: SessionFactory, content: ContentStore, cache: Cache):
        self.get_session = get_session
        self.content = content
        self.cache = cache

    def generate_digest(
        self,
        user_id: str,
        timeframe: str,
        now: Optional[datetime] = None,
        top_n: int = DEFAULT_TOP_N,
    ) -> Digest:
        tf = (timeframe or "").lower()
        now = as_utc(now or utcnow())
        cutoff = timeframe_cutoff(tf, now)

        entries = self.content.entries_since(user_id, cutoff)
        if not entries:
            logger.info("DIGEST_NO_CONTENT", extra={"timeframe": tf, "cutoff": cutoff.isoformat()})
            raise NoContentError(user_id, tf)

        top = rank_entries(entries)[:top_n]
        html = render_items_html(tf, [
            {
                "title": e.item.title,
                "url": e.item.url,
                "priority": e.analysis.priority,
                "summary": e.analysis.summary_paragraph or e.analysis.summary_sentence,
                "tags": e.analysis.tags,
                "source": e.item.source,
            }
            for e in top
        ])

        digest = Digest(
            user_id=user_id,
            type=tf.upper(),
            title=digest_title(tf),
            html_content=html,
            content_ids=[e.item.id for e in top],
            status="PENDING",
            scheduled_at=now,
            created_at=now,
        )
        with self.get_session() as s:
            s.add(digest)
            s.commit()

        self.cache.delete(CacheKeys.digests(user_id))
        logger.info(
            "DIGEST_GENERATED",
            extra={"digest_id": digest.id, "timeframe": tf, "candidates": len(entries), "items": len(top)},
        )
        return digest

    def list_digests(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        key = CacheKeys.digests(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with self.get_session() as s:
            rows = s.exec(
                select(Digest)
                .where(Digest.user_id == user_id)
                .order_by(col(Digest.created_at).desc())
                .limit(limit)
            ).all()
        result = [digest_to_dict(d) for d in rows]
        self.cache.set(key, result, DIGEST_LIST_TTL)
        return result

    def get_digest(self, user_id: str, digest_id: str) -> Digest:
        with self.get_session() as s:
            d = s.get(Digest, digest_id)
        if d is None or d.user_id != user_id:
            raise NotFoundError("digest", digest_id)
        return d

    def mark_sent(self, digest_id: str, now: Optional[datetime] = None) -> Digest:
        with self.get_session() as s:
            d = s.get(Digest, digest_id)
            if d is None:
                raise NotFoundError("digest", digest_id)
            if d.status == "SENT":
                return d
            d.status = "SENT"
            d.sent_at = as_utc(now or utcnow())
            s.add(d)
            s.commit()

        self.cache.delete(CacheKeys.digests(d.user_id))
        logger.info("DIGEST_SENT", extra={"digest_id": digest_id})
        return d

    def last_generated_at(self, user_id: str, timeframe: str) -> Optional[datetime]:
        with self.get_session() as s:
            return s.exec(
                select(Digest.created_at)
                .where(Digest.user_id == user_id, Digest.type == timeframe.upper())
                .order_by(col(Digest.created_at).desc())
                .limit(1)
            ).first()

    def is_due(self, user_id: str, timeframe: str, now: Optional[datetime] = None) -> bool:
        """A user's digest is due when none of that type was generated within the timeframe (one day of slack)."""
        now = as_utc(now or utcnow())
        last = self.last_generated_at(user_id, timeframe)
        return last is None or as_utc(last) < timeframe_cutoff(timeframe, now) + DUE_SLACK
