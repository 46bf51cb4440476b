# pensive/pipeline.py
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Tuple

from .analyzer import AnalysisOutcome, Analyzer
from .concepts import ConceptGraph
from .content_store import ContentStore
from .extraction import ExtractedPage, extract_page
from .logging_setup import get_logger
from .models import Analysis
from .podcasts import PodcastEpisode

logger = get_logger("pensive.pipeline")

Extractor = Callable[[str], ExtractedPage]


class ContentPipeline:
    """
    Orchestrates ingestion: extract -> store (dedup) -> analyze -> persist the
    analysis -> fold its entities into the concept graph.
    """

    def __init__(
        self,
        content: ContentStore,
        analyzer: Analyzer,
        concepts: ConceptGraph,
        extractor: Extractor = extract_page,
    ):
        self.content = content
        self.analyzer = analyzer
        self.concepts = concepts
        self.extractor = extractor

    def analyze_url(self, user_id: str, url: str, source: str = "web") -> Dict[str, Any]:
        t0 = time.perf_counter()
        page = self.extractor(url)
        out = self._ingest(user_id, page.title, url, page.text, source)
        logger.info(
            "ANALYZE_URL_DONE",
            extra={
                "url": url,
                "content_id": out["contentId"],
                "is_new": out["isNew"],
                "cached": out["cached"],
                "elapsed_ms": round((time.perf_counter() - t0) * 1000),
            },
        )
        return out

    def ingest_text(self, user_id: str, title: str, url: str, text: str, source: str = "manual") -> Dict[str, Any]:
        return self._ingest(user_id, title, url, text, source)

    def ingest_episode(self, user_id: str, episode: PodcastEpisode) -> Dict[str, Any]:
        """Store and analyze one podcast episode (source="podcast"); its details go to ContentItem.media."""
        out = self._ingest(
            user_id, episode.display_title, episode.url, episode.text(), "podcast", media=episode.media()
        )
        logger.info(
            "PODCAST_EPISODE_INGESTED",
            extra={"url": episode.url, "content_id": out["contentId"], "is_new": out["isNew"], "platform": episode.platform},
        )
        out["episode"] = episode.to_dict()
        return out

    def analyze_stored(self, content_id: str) -> Analysis:
        """Analyze a stored item once; an item that already has an analysis is left alone."""
        current = self.content.current_analysis(content_id)
        if current is not None:
            logger.info("ANALYSIS_ALREADY_PRESENT", extra={"content_id": content_id, "version": current.version})
            return current
        analysis, _ = self._analyze(content_id)
        return analysis

    def reanalyze(self, user_id: str, content_id: str) -> Analysis:
        self.content.get_content(user_id, content_id)  # ownership check
        analysis, _ = self._analyze(content_id, use_cache=False)
        return analysis

    def delete(self, user_id: str, content_id: str) -> None:
        def retract(s, item, current):
            if current is not None:
                self.concepts.retract_in(s, user_id, content_id, current.to_payload())

        self.content.delete_content(user_id, content_id, on_delete=retract)
        self.concepts.invalidate(user_id)

    # ---- internals ----

    def _ingest(
        self,
        user_id: str,
        title: str,
        url: str,
        text: str,
        source: str,
        media: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        stored = self.content.store_content(user_id, title, url, text, source, media=media)
        if not stored.is_new:
            current = self.content.current_analysis(stored.content_id)
            if current is not None:
                return {
                    "contentId": stored.content_id,
                    "analysis": current.to_payload(),
                    "isNew": False,
                    "cached": True,
                }

        analysis, outcome = self._analyze(stored.content_id)
        return {
            "contentId": stored.content_id,
            "analysis": analysis.to_payload(),
            "isNew": stored.is_new,
            "cached": outcome.cached,
        }

    def _analyze(self, content_id: str, use_cache: bool = True) -> Tuple[Analysis, AnalysisOutcome]:
        item = self.content.get_item(content_id)
        outcome = self.analyzer.analyze(item.title, item.raw_text, item.url, use_cache=use_cache)
        payload = outcome.payload.to_dict()

        # The new version only becomes current if the graph update commits with it
        def fold_into_graph(s, stored_item, previous):
            if previous is not None:
                self.concepts.retract_in(s, stored_item.user_id, content_id, previous.to_payload())
            self.concepts.record_in(s, stored_item.user_id, content_id, payload)

        analysis = self.content.store_analysis(content_id, payload, mode=outcome.mode, on_stored=fold_into_graph)
        self.concepts.invalidate(item.user_id)
        return analysis, outcome
