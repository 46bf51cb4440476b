from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime, timezone
import uuid

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Column, JSON

SOURCES = ("web", "rss", "podcast", "manual")
PRIORITIES = ("skim", "read", "deep-dive")
TIMEFRAMES = ("weekly", "monthly", "quarterly")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Tag a naive value as UTC. Some SQLite drivers hand stored datetimes back without tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)



def new_id() -> str:
    return uuid.uuid4().hex


class JobType(str, Enum):
    ANALYZE_CONTENT = "ANALYZE_CONTENT"
    FETCH_RSS = "FETCH_RSS"
    GENERATE_DIGEST = "GENERATE_DIGEST"
    SEND_EMAIL = "SEND_EMAIL"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    email: str = ""
    digest_email: Optional[str] = None
    digest_frequency: str = "weekly"  # weekly | monthly | quarterly
    created_at: datetime = Field(default_factory=utcnow)


class ContentItem(SQLModel, table=True):
    __tablename__ = "content_items"
    __table_args__ = (UniqueConstraint("user_id", "content_hash", name="uq_content_user_hash"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    title: str = ""
    url: str = ""
    raw_text: str = ""
    content_hash: str = Field(index=True)
    source: str = "web"  # web | rss | podcast | manual
    current_analysis_id: Optional[str] = None
    # podcast episodes: showTitle, audioUrl, durationSeconds, episodeId, platform, publishedAt
    media: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)


class Analysis(SQLModel, table=True):
    __tablename__ = "analyses"
    __table_args__ = (UniqueConstraint("content_item_id", "version", name="uq_analysis_version"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    content_item_id: str = Field(index=True)
    version: int = 1
    summary_sentence: str = ""
    summary_paragraph: str = ""
    is_full_read: bool = False
    entities: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    relationships: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    priority: str = "read"  # skim | read | deep-dive
    confidence: float = 0.5
    mode: str = "llm"  # llm | fallback | mock
    created_at: datetime = Field(default_factory=utcnow)

    def to_payload(self) -> Dict[str, Any]:
        """Same shape the analyzer returns, so cached and stored analyses look alike to callers."""
        return {
            "summary": {
                "sentence": self.summary_sentence,
                "paragraph": self.summary_paragraph,
                "isFullRead": self.is_full_read,
            },
            "entities": list(self.entities or []),
            "tags": list(self.tags or []),
            "relationships": list(self.relationships or []),
            "priority": self.priority,
            "confidence": self.confidence,
            "mode": self.mode,
            "version": self.version,
        }


class Concept(SQLModel, table=True):
    __tablename__ = "concepts"
    __table_args__ = (UniqueConstraint("user_id", "name", "type", name="uq_concept_user_name_type"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    type: str = "CONCEPT"
    frequency: int = 0
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ConceptRelationship(SQLModel, table=True):
    __tablename__ = "concept_relationships"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "from_concept_id", "to_concept_id", "originating_content_id",
            name="uq_relationship_origin",
        ),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    from_concept_id: str = Field(index=True)
    to_concept_id: str = Field(index=True)
    type: str = "RELATES_TO"  # REQUIRES | ENABLES | SUPPORTS | RELATES_TO | ...
    strength: float = 0.5
    originating_content_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Feed(SQLModel, table=True):
    __tablename__ = "feeds"
    __table_args__ = (UniqueConstraint("user_id", "url", name="uq_feed_user_url"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    url: str
    title: str = ""
    kind: str = "rss"  # rss | podcast
    is_active: bool = True
    fetch_interval_seconds: int = 3600
    last_fetched_at: Optional[datetime] = None
    last_item_seen_at: Optional[datetime] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    item_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Job(SQLModel, table=True):
    __tablename__ = "jobs"

    id: str = Field(default_factory=new_id, primary_key=True)
    type: JobType
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    user_id: Optional[str] = Field(default=None, index=True)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    scheduled_at: datetime = Field(default_factory=utcnow, index=True)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None
    attempts: int = 0
    max_attempts: int = 3
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Digest(SQLModel, table=True):
    __tablename__ = "digests"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True)
    type: str  # WEEKLY | MONTHLY | QUARTERLY
    title: str
    html_content: str = ""
    content_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    status: str = "PENDING"  # PENDING | SENT
    scheduled_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
