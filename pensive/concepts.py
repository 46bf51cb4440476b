# pensive/concepts.py
from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlmodel import col, select

from .cache import CONCEPT_MAP_TTL, Cache, CacheKeys
from .errors import NotFoundError
from .logging_setup import get_logger
from .models import Concept, ConceptRelationship, ContentItem, utcnow
from .store import SessionFactory

logger = get_logger("pensive.concepts")

NEW_RELATIONSHIP_STRENGTH = 0.5
RELATIONSHIP_STRENGTH_STEP = 0.1
MAX_RELATIONSHIP_STRENGTH = 1.0

EntityKey = Tuple[str, str]  # (name, TYPE)


def _distinct_entities(entities: Iterable[Dict[str, Any]]) -> "OrderedDict[EntityKey, Dict[str, Any]]":
    out: "OrderedDict[EntityKey, Dict[str, Any]]" = OrderedDict()
    for e in entities or []:
        name = str(e.get("name") or "").strip()
        if not name:
            continue
        key = (name, str(e.get("type") or "CONCEPT").strip().upper() or "CONCEPT")
        out.setdefault(key, e)
    return out


def _node_density(frequency: int, max_frequency: int) -> float:
    if max_frequency <= 1:
        return 50
    return min(100.0, max(10.0, frequency / max_frequency * 100))


class ConceptGraph:
    """
    Aggregates entities extracted by analyses into per-user concepts and
    relationships, and builds the abstraction-filtered concept map.
    """

    def __init__(self, get_session: SessionFactory, cache: Cache):
        self.get_session = get_session
        self.cache = cache

    # ---- Incremental updates ----

    def record_analysis(self, user_id: str, content_id: str, payload: Dict[str, Any]) -> List[Concept]:
        with self.get_session() as s:
            concepts = self.record_in(s, user_id, content_id, payload)
            s.commit()
        self.invalidate(user_id)
        return concepts

    def retract_analysis(self, user_id: str, content_id: str, payload: Optional[Dict[str, Any]]) -> None:
        """Undo what record_analysis did for one content item (superseded analysis or deleted content)."""
        with self.get_session() as s:
            self.retract_in(s, user_id, content_id, payload)
            s.commit()
        self.invalidate(user_id)

    def record_in(self, s, user_id: str, content_id: str, payload: Dict[str, Any]) -> List[Concept]:
        """Apply one analysis to the graph inside the caller's session; the caller commits and invalidates."""
        entities = _distinct_entities(payload.get("entities") or [])
        if not entities:
            return []

        by_key: Dict[EntityKey, Concept] = {}
        for (name, ctype), ent in entities.items():
            by_key[(name, ctype)] = self._bump_concept(s, user_id, name, ctype, ent.get("description"))
        s.flush()

        by_name = {name.lower(): c for (name, _), c in by_key.items()}
        pairs: List[Tuple[Concept, Concept, str]] = []
        explicit = payload.get("relationships") or []
        if explicit:
            for rel in explicit:
                frm = by_name.get(str(rel.get("from") or "").strip().lower())
                to = by_name.get(str(rel.get("to") or "").strip().lower())
                if frm is not None and to is not None:
                    pairs.append((frm, to, str(rel.get("type") or "RELATES_TO").upper()))
        else:
            # Co-occurrence: every unordered pair once, in extraction order
            ordered = list(by_key.values())
            for i, frm in enumerate(ordered):
                for to in ordered[i + 1:]:
                    pairs.append((frm, to, "RELATES_TO"))

        linked = 0
        for frm, to, rtype in pairs:
            if frm.id == to.id:
                continue
            self._bump_relationship(s, user_id, frm.id, to.id, rtype, content_id)
            linked += 1
        s.flush()

        concepts = list(by_key.values())
        logger.info(
            "CONCEPTS_RECORDED",
            extra={"content_id": content_id, "concepts": len(concepts), "relationships": linked},
        )
        return concepts

    def retract_in(self, s, user_id: str, content_id: str, payload: Optional[Dict[str, Any]]) -> None:
        for rel in s.exec(
            select(ConceptRelationship).where(
                ConceptRelationship.user_id == user_id,
                ConceptRelationship.originating_content_id == content_id,
            )
        ).all():
            s.delete(rel)

        for (name, ctype) in _distinct_entities((payload or {}).get("entities") or []):
            concept = self._find(s, user_id, name, ctype)
            if concept is None:
                continue
            concept.frequency -= 1
            if concept.frequency <= 0:
                for rel in s.exec(
                    select(ConceptRelationship).where(
                        or_(
                            ConceptRelationship.from_concept_id == concept.id,
                            ConceptRelationship.to_concept_id == concept.id,
                        )
                    )
                ).all():
                    s.delete(rel)
                s.delete(concept)
            else:
                concept.updated_at = utcnow()
                s.add(concept)
        s.flush()
        logger.info("CONCEPTS_RETRACTED", extra={"content_id": content_id})

    def invalidate(self, user_id: str) -> None:
        self.cache.delete_many(CacheKeys.concept_maps(user_id))

    # ---- Queries ----

    def build_concept_map(self, user_id: str, abstraction_level: int = 50, search_query: str = "") -> Dict[str, Any]:
        level = min(100, max(0, int(abstraction_level)))
        query = (search_query or "").strip()
        key = CacheKeys.concept_map(user_id, level)

        if not query:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        with self.get_session() as s:
            highest = s.exec(select(func.max(Concept.frequency)).where(Concept.user_id == user_id)).one()
            max_frequency = max(highest or 0, 1)
            # floor(level/100 * max) in integer arithmetic
            min_frequency = max(1, (level * max_frequency) // 100)

            stmt = select(Concept).where(Concept.user_id == user_id, Concept.frequency >= min_frequency)
            if query:
                escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                stmt = stmt.where(col(Concept.name).ilike(f"%{escaped}%", escape="\\"))
            concepts = s.exec(stmt.order_by(col(Concept.frequency).desc(), col(Concept.name))).all()

            ids = [c.id for c in concepts]
            relationships = []
            if ids:
                relationships = s.exec(
                    select(ConceptRelationship).where(
                        ConceptRelationship.user_id == user_id,
                        col(ConceptRelationship.from_concept_id).in_(ids),
                        col(ConceptRelationship.to_concept_id).in_(ids),
                    )
                ).all()

        nodes = [
            {
                "id": c.id,
                "label": c.name,
                "type": c.type,
                "frequency": c.frequency,
                "density": _node_density(c.frequency, max_frequency),
                "description": c.description,
            }
            for c in concepts
        ]
        edges = [
            {
                "id": r.id,
                "source": r.from_concept_id,
                "target": r.to_concept_id,
                "type": r.type,
                "weight": r.strength,
            }
            for r in relationships
        ]
        result = {"nodes": nodes, "edges": edges}

        logger.info(
            "CONCEPT_MAP_BUILT",
            extra={"level": level, "min_frequency": min_frequency, "nodes": len(nodes), "edges": len(edges), "search": bool(query)},
        )
        if not query:
            self.cache.set(key, result, CONCEPT_MAP_TTL)
        return result

    def concept_details(self, user_id: str, concept_id: str) -> Dict[str, Any]:
        with self.get_session() as s:
            concept = s.get(Concept, concept_id)
            if concept is None or concept.user_id != user_id:
                raise NotFoundError("concept", concept_id)

            rels = s.exec(
                select(ConceptRelationship).where(
                    ConceptRelationship.user_id == user_id,
                    or_(
                        ConceptRelationship.from_concept_id == concept_id,
                        ConceptRelationship.to_concept_id == concept_id,
                    ),
                )
            ).all()
            other_ids = {r.to_concept_id if r.from_concept_id == concept_id else r.from_concept_id for r in rels}
            others = {}
            if other_ids:
                others = {c.id: c for c in s.exec(select(Concept).where(col(Concept.id).in_(other_ids))).all()}
            content_ids = {r.originating_content_id for r in rels}
            items = []
            if content_ids:
                items = s.exec(
                    select(ContentItem)
                    .where(col(ContentItem.id).in_(content_ids))
                    .order_by(col(ContentItem.created_at).desc())
                ).all()

        related = []
        for r in sorted(rels, key=lambda r: r.strength, reverse=True):
            outgoing = r.from_concept_id == concept_id
            other = others.get(r.to_concept_id if outgoing else r.from_concept_id)
            if other is None:
                continue
            related.append({
                "id": other.id,
                "label": other.name,
                "type": other.type,
                "relationship": r.type,
                "strength": r.strength,
                "direction": "outgoing" if outgoing else "incoming",
            })

        return {
            "concept": {
                "id": concept.id,
                "label": concept.name,
                "type": concept.type,
                "frequency": concept.frequency,
                "description": concept.description,
            },
            "related": related,
            "content": [{"id": i.id, "title": i.title, "url": i.url} for i in items],
        }

    # ---- helpers ----

    @staticmethod
    def _find(s, user_id: str, name: str, ctype: str) -> Optional[Concept]:
        return s.exec(
            select(Concept).where(Concept.user_id == user_id, Concept.name == name, Concept.type == ctype)
        ).first()

    def _bump_concept(self, s, user_id: str, name: str, ctype: str, description: Optional[str]) -> Concept:
        concept = self._find(s, user_id, name, ctype)
        if concept is None:
            concept = Concept(user_id=user_id, name=name, type=ctype, frequency=1, description=description)
        else:
            concept.frequency += 1
            concept.updated_at = utcnow()
            if description and not concept.description:
                concept.description = description
        s.add(concept)
        return concept

    @staticmethod
    def _bump_relationship(s, user_id: str, from_id: str, to_id: str, rtype: str, content_id: str) -> ConceptRelationship:
        rel = s.exec(
            select(ConceptRelationship).where(
                ConceptRelationship.user_id == user_id,
                ConceptRelationship.from_concept_id == from_id,
                ConceptRelationship.to_concept_id == to_id,
                ConceptRelationship.originating_content_id == content_id,
            )
        ).first()
        if rel is None:
            rel = ConceptRelationship(
                user_id=user_id,
                from_concept_id=from_id,
                to_concept_id=to_id,
                type=rtype,
                strength=NEW_RELATIONSHIP_STRENGTH,
                originating_content_id=content_id,
            )
        else:
            rel.strength = min(MAX_RELATIONSHIP_STRENGTH, round(rel.strength + RELATIONSHIP_STRENGTH_STEP, 4))
        s.add(rel)
        return rel
