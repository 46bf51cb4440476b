# pensive/analyzer.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import json
import re

from openai import OpenAI
from pydantic import ValidationError

from .cache import ANALYSIS_TTL, Cache, CacheKeys
from .config import LLM_MODEL
from .fingerprint import fingerprint
from .logging_setup import get_logger
from .schema import AnalysisPayload

logger = get_logger("pensive.analyzer")

MAX_INPUT_CHARS = 10000

SYS_PROMPT = """You are an expert content analyzer. Analyze the given content and respond with valid JSON only, using exactly this structure:
{
  "summary": {
    "sentence": "One sentence summary",
    "paragraph": "Detailed paragraph summary",
    "isFullRead": false
  },
  "entities": [{"name": "Entity Name", "type": "CONCEPT|PERSON|ORGANIZATION|TECHNOLOGY|METHODOLOGY"}],
  "relationships": [{"from": "Entity Name", "to": "Other Entity", "type": "REQUIRES|ENABLES|SUPPORTS|RELATES_TO"}],
  "tags": ["tag1", "tag2", "tag3"],
  "priority": "skim|read|deep-dive",
  "confidence": 0.8
}
Set isFullRead to true only when the piece is worth reading in full rather than from the summary.
Only use entity names in relationships that also appear in entities."""

DIGEST_SYS_PROMPT = (
    "You are a helpful assistant that creates personalized learning digests. "
    "Create engaging, well-formatted HTML fragments for email delivery. No <html> or <body> tags."
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass
class AnalysisOutcome:
    payload: AnalysisPayload
    cached: bool
    mode: str  # llm | fallback | mock

    def to_dict(self) -> Dict[str, Any]:
        return {**self.payload.to_dict(), "mode": self.mode}


def _truncate(s: str, max_chars: int = MAX_INPUT_CHARS) -> str:
    return s[:max_chars] if s else s


def mock_analysis(title: str) -> AnalysisPayload:
    """Demo-mode result used when no LLM credential is configured."""
    return AnalysisPayload.model_validate({
        "summary": {
            "sentence": f'Analysis of "{title}"',
            "paragraph": "This content discusses various topics and provides insights into the subject matter.",
            "isFullRead": False,
        },
        "entities": [
            {"name": "Technology", "type": "CONCEPT"},
            {"name": "Innovation", "type": "CONCEPT"},
        ],
        "tags": ["technology", "analysis"],
        "priority": "read",
        "confidence": 0.7,
    })


def fallback_analysis(title: str) -> AnalysisPayload:
    return AnalysisPayload.model_validate({
        "summary": {
            "sentence": f'Analysis of "{title}"',
            "paragraph": "This content has been processed with a fallback analyzer due to API limitations.",
            "isFullRead": False,
        },
        "entities": [{"name": "Content", "type": "CONCEPT"}],
        "tags": ["analyzed", "fallback"],
        "priority": "read",
        "confidence": 0.5,
    })


def parse_analysis(text: str) -> AnalysisPayload:
    """
    Parse a model response into an AnalysisPayload.
    Tolerates ```json fences and chatter around the object; raises ValueError otherwise.
    """
    raw = _FENCE.sub("", (text or "").strip())
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        start, end = raw.find("{"), raw.rfind("}")
        if start < 0 or end <= start:
            raise ValueError("response contains no JSON object")
        data = json.loads(raw[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("response JSON is not an object")
    return AnalysisPayload.model_validate(data)


class Analyzer:
    """
    Sends extracted text to the LLM and returns a structured analysis.

    Never raises for upstream trouble: no client -> mock analysis, any failure ->
    deterministic fallback. Only successful LLM results are cached (24h, keyed by
    the content fingerprint).
    """

    def __init__(self, client: Optional[OpenAI], cache: Cache, model: str = LLM_MODEL):
        self.client = client
        self.cache = cache
        self.model = model

    @property
    def demo_mode(self) -> bool:
        return self.client is None

    def analyze(self, title: str, text: str, url: str, use_cache: bool = True) -> AnalysisOutcome:
        key = CacheKeys.analysis(fingerprint(url, text))

        if use_cache:
            hit = self.cache.get(key)
            if hit is not None:
                try:
                    payload = AnalysisPayload.model_validate(hit)
                    logger.info("ANALYSIS_CACHE_HIT", extra={"url": url})
                    return AnalysisOutcome(payload=payload, cached=True, mode="llm")
                except ValidationError:
                    logger.warning("ANALYSIS_CACHE_CORRUPT", extra={"url": url})
                    self.cache.delete(key)

        if self.client is None:
            logger.info("ANALYSIS_MOCK", extra={"url": url, "reason": "no_api_key"})
            return AnalysisOutcome(payload=mock_analysis(title), cached=False, mode="mock")

        try:
            content = self._complete(title, text, url)
            payload = parse_analysis(content)
        except Exception as e:
            logger.exception("ANALYSIS_FALLBACK", extra={"url": url, "error": type(e).__name__})
            return AnalysisOutcome(payload=fallback_analysis(title), cached=False, mode="fallback")

        self.cache.set(key, payload.to_dict(), ANALYSIS_TTL)
        logger.info(
            "ANALYSIS_OK",
            extra={"url": url, "entities": len(payload.entities), "priority": payload.priority},
        )
        return AnalysisOutcome(payload=payload, cached=False, mode="llm")

    def _complete(self, title: str, text: str, url: str) -> str:
        resp = self.client.chat.completions.create(
            model=self.model,
            temperature=0.3,
            max_tokens=2000,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYS_PROMPT},
                {"role": "user", "content": f"Title: {title}\n\nContent: {_truncate(text)}\n\nURL: {url}"},
            ],
        )
        return resp.choices[0].message.content or ""

    def compose_digest(self, timeframe: str, items: List[Dict[str, Any]]) -> Optional[str]:
        """
        Ask the model for an HTML digest narrative over already-summarized items.
        Returns None in demo mode or on failure; callers render the template digest instead.
        """
        if self.client is None or not items:
            return None

        lines = []
        for i, it in enumerate(items, 1):
            summary = it.get("summary") or ""
            if isinstance(summary, dict):
                summary = summary.get("paragraph") or summary.get("sentence") or ""
            lines.append(
                f"{i}. {it.get('title', '')} ({it.get('priority', 'read')})\n"
                f"   Source: {it.get('source', '')}\n"
                f"   URL: {it.get('url', '')}\n"
                f"   Summary: {summary}\n"
                f"   Tags: {', '.join(it.get('tags') or [])}"
            )

        prompt = f"""Create a {timeframe} digest of the user's learning content.

Here is what they consumed:

{chr(10).join(lines)}

Include: an executive summary of key themes, the priority items to focus on, key concepts,
connections between items, and suggested follow-up reading. Format it as clean HTML."""

        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                temperature=0.7,
                messages=[
                    {"role": "system", "content": DIGEST_SYS_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
            content = (resp.choices[0].message.content or "").strip()
        except Exception as e:
            logger.exception("DIGEST_COMPOSE_FAILED", extra={"timeframe": timeframe, "error": type(e).__name__})
            return None
        return content or None
