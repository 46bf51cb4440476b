# pensive/content_store.py
"""
Content Store: raw content items per user, deduplicated by fingerprint, plus
their (versioned) analyses.

Dedup is an atomic insert-if-absent: the unique constraint on
(user_id, content_hash) decides, and a losing insert falls back to reading the
row that won. Two concurrent submissions of the same URL/text can therefore
never produce two items.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from .errors import NotFoundError
from .fingerprint import fingerprint
from .logging_setup import get_logger
from .models import PRIORITIES, SOURCES, TIMEFRAMES, Analysis, ContentItem, as_utc, utcnow
from .store import SessionFactory

logger = get_logger("pensive.content")

# (session, item, analysis) callback run inside a store transaction
UnitHook = Callable[[Any, ContentItem, Optional[Analysis]], None]

MAX_PAGE_SIZE = 100

_TIMEFRAME_DELTAS = {
    "weekly": relativedelta(days=7),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
}


def timeframe_cutoff(timeframe: str, now: Optional[datetime] = None) -> datetime:
    tf = (timeframe or "").lower()
    if tf not in _TIMEFRAME_DELTAS:
        raise ValueError(f"timeframe must be one of {', '.join(TIMEFRAMES)}")
    return as_utc(now or utcnow()) - _TIMEFRAME_DELTAS[tf]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class StoreResult:
    content_id: str
    is_new: bool


@dataclass
class ContentEntry:
    item: ContentItem
    analysis: Optional[Analysis] = None

    def to_dict(self, include_text: bool = False) -> Dict[str, Any]:
        out = {
            "id": self.item.id,
            "title": self.item.title,
            "url": self.item.url,
            "source": self.item.source,
            "media": dict(self.item.media or {}),
            "createdAt": self.item.created_at.isoformat(),
            "analysis": self.analysis.to_payload() if self.analysis else None,
        }
        if include_text:
            out["text"] = self.item.raw_text
        return out


@dataclass
class ContentPage:
    items: List[ContentEntry]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return (self.page - 1) * self.limit + len(self.items) < self.total

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [e.to_dict() for e in self.items],
            "total": self.total,
            "hasMore": self.has_more,
            "page": self.page,
            "totalPages": self.total_pages,
        }


class ContentStore:
    def __init__(self, get_session: SessionFactory):
        self.get_session = get_session

    # ---- Content items ----

    def store_content(
        self,
        user_id: str,
        title: str,
        url: str,
        text: str,
        source: str = "web",
        media: Optional[Dict[str, Any]] = None,
    ) -> StoreResult:
        if source not in SOURCES:
            raise ValueError(f"source must be one of {', '.join(SOURCES)}")

        content_hash = fingerprint(url, text)
        with self.get_session() as s:
            item = ContentItem(
                user_id=user_id,
                title=(title or "").strip() or "Untitled",
                url=url,
                raw_text=text,
                content_hash=content_hash,
                source=source,
                media=dict(media or {}),
            )
            s.add(item)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                existing = s.exec(
                    select(ContentItem).where(
                        ContentItem.user_id == user_id,
                        ContentItem.content_hash == content_hash,
                    )
                ).one()
                logger.info("CONTENT_DUPLICATE", extra={"content_id": existing.id, "url": url})
                return StoreResult(content_id=existing.id, is_new=False)

        logger.info("CONTENT_STORED", extra={"content_id": item.id, "url": url, "source": source})
        return StoreResult(content_id=item.id, is_new=True)

    def get_item(self, content_id: str) -> ContentItem:
        with self.get_session() as s:
            item = s.get(ContentItem, content_id)
        if item is None:
            raise NotFoundError("content", content_id)
        return item

    def get_content(self, user_id: str, content_id: str) -> ContentEntry:
        with self.get_session() as s:
            item = s.get(ContentItem, content_id)
            if item is None or item.user_id != user_id:
                raise NotFoundError("content", content_id)
            analysis = s.get(Analysis, item.current_analysis_id) if item.current_analysis_id else None
        return ContentEntry(item=item, analysis=analysis)

    def get_user_content(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 50,
        source: Optional[str] = None,
        priority: Optional[str] = None,
        timeframe: Optional[str] = None,
    ) -> ContentPage:
        page = max(1, int(page or 1))
        limit = 50 if limit is None else min(MAX_PAGE_SIZE, max(1, int(limit)))

        stmt = select(ContentItem).where(ContentItem.user_id == user_id)
        if source:
            stmt = stmt.where(ContentItem.source == source)
        if timeframe:
            stmt = stmt.where(ContentItem.created_at >= timeframe_cutoff(timeframe))
        if priority:
            if priority not in PRIORITIES:
                raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
            stmt = stmt.join(Analysis, Analysis.id == ContentItem.current_analysis_id).where(
                Analysis.priority == priority
            )

        with self.get_session() as s:
            total = s.exec(select(func.count()).select_from(stmt.subquery())).one()
            items = s.exec(
                stmt.order_by(col(ContentItem.created_at).desc(), col(ContentItem.id).desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            entries = self._with_analyses(s, items)

        return ContentPage(items=entries, total=total, page=page, limit=limit)

    def search(self, user_id: str, query: str, limit: int = 50) -> List[ContentEntry]:
        term = (query or "").strip()
        if not term:
            return []
        pattern = f"%{_escape_like(term)}%"
        with self.get_session() as s:
            items = s.exec(
                select(ContentItem)
                .where(ContentItem.user_id == user_id)
                .where(or_(
                    col(ContentItem.title).ilike(pattern, escape="\\"),
                    col(ContentItem.raw_text).ilike(pattern, escape="\\"),
                ))
                .order_by(col(ContentItem.created_at).desc())
                .limit(limit)
            ).all()
            return self._with_analyses(s, items)

    def entries_since(self, user_id: str, cutoff: datetime, analyzed_only: bool = True) -> List[ContentEntry]:
        with self.get_session() as s:
            items = s.exec(
                select(ContentItem)
                .where(ContentItem.user_id == user_id, ContentItem.created_at >= cutoff)
                .order_by(col(ContentItem.created_at).desc())
            ).all()
            entries = self._with_analyses(s, items)
        if analyzed_only:
            entries = [e for e in entries if e.analysis is not None]
        return entries

    def list_unanalyzed(self, user_id: str) -> List[ContentItem]:
        with self.get_session() as s:
            return list(s.exec(
                select(ContentItem)
                .where(ContentItem.user_id == user_id)
                .where(col(ContentItem.current_analysis_id).is_(None))
                .order_by(col(ContentItem.created_at))
            ).all())

    def delete_content(self, user_id: str, content_id: str, on_delete: Optional[UnitHook] = None) -> None:
        """`on_delete(session, item, current_analysis)` runs inside the same transaction as the delete."""
        with self.get_session() as s:
            item = s.get(ContentItem, content_id)
            if item is None or item.user_id != user_id:
                raise NotFoundError("content", content_id)
            if on_delete is not None:
                current = s.get(Analysis, item.current_analysis_id) if item.current_analysis_id else None
                on_delete(s, item, current)
            for a in s.exec(select(Analysis).where(Analysis.content_item_id == content_id)).all():
                s.delete(a)
            s.delete(item)
            s.commit()
        logger.info("CONTENT_DELETED", extra={"content_id": content_id})

    # ---- Analyses ----

    def store_analysis(
        self,
        content_id: str,
        payload: Dict[str, Any],
        mode: str = "llm",
        on_stored: Optional[UnitHook] = None,
    ) -> Analysis:
        """
        Add a new analysis version and make it the item's current one.

        `on_stored(session, item, previous_analysis)` runs before the commit, so
        whatever it writes lands together with the new version or not at all.
        """
        summary = payload.get("summary") or {}
        with self.get_session() as s:
            item = s.get(ContentItem, content_id)
            if item is None:
                raise NotFoundError("content", content_id)
            latest = s.exec(
                select(func.max(Analysis.version)).where(Analysis.content_item_id == content_id)
            ).one()
            analysis = Analysis(
                content_item_id=content_id,
                version=(latest or 0) + 1,
                summary_sentence=summary.get("sentence", ""),
                summary_paragraph=summary.get("paragraph", ""),
                is_full_read=bool(summary.get("isFullRead", False)),
                entities=list(payload.get("entities") or []),
                tags=list(payload.get("tags") or []),
                relationships=list(payload.get("relationships") or []),
                priority=payload.get("priority", "read"),
                confidence=float(payload.get("confidence", 0.5)),
                mode=mode,
            )
            previous = s.get(Analysis, item.current_analysis_id) if item.current_analysis_id else None
            s.add(analysis)
            s.flush()
            item.current_analysis_id = analysis.id
            s.add(item)
            if on_stored is not None:
                on_stored(s, item, previous)
            s.commit()

        logger.info(
            "ANALYSIS_STORED",
            extra={"content_id": content_id, "version": analysis.version, "mode": mode},
        )
        return analysis

    def current_analysis(self, content_id: str) -> Optional[Analysis]:
        with self.get_session() as s:
            item = s.get(ContentItem, content_id)
            if item is None or not item.current_analysis_id:
                return None
            return s.get(Analysis, item.current_analysis_id)

    def analysis_history(self, content_id: str) -> List[Analysis]:
        with self.get_session() as s:
            return list(s.exec(
                select(Analysis)
                .where(Analysis.content_item_id == content_id)
                .order_by(col(Analysis.version))
            ).all())

    @staticmethod
    def _with_analyses(s, items: List[ContentItem]) -> List[ContentEntry]:
        ids = [i.current_analysis_id for i in items if i.current_analysis_id]
        by_id = {}
        if ids:
            by_id = {a.id: a for a in s.exec(select(Analysis).where(col(Analysis.id).in_(ids))).all()}
        return [ContentEntry(item=i, analysis=by_id.get(i.current_analysis_id)) for i in items]
