from typing import Annotated, Any, List, Optional
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from .models import PRIORITIES, SOURCES, TIMEFRAMES

def _check_url(v: str) -> str:
    v = (v or "").strip()
    parsed = urlparse(v)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return v

def _check_source(v: str) -> str:
    v = (v or "web").strip().lower()
    if v not in SOURCES:
        raise ValueError(f"source must be one of {', '.join(SOURCES)}")
    return v

def _check_timeframe(v: str) -> str:
    v = (v or "").strip().lower()
    if v not in TIMEFRAMES:
        raise ValueError(f"timeframe must be one of {', '.join(TIMEFRAMES)}")
    return v

HttpUrl = Annotated[str, AfterValidator(_check_url)]
Source = Annotated[str, AfterValidator(_check_source)]
Timeframe = Annotated[str, AfterValidator(_check_timeframe)]

# ---- LLM analysis contract ----

class SummaryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sentence: str = ""
    paragraph: str = ""
    is_full_read: bool = Field(False, alias="isFullRead")

class EntityOut(BaseModel):
    name: str
    type: str = "CONCEPT"
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("entity name is empty")
        return v

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return (str(v or "CONCEPT").strip() or "CONCEPT").upper()

class RelationshipOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    type: str = "RELATES_TO"

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v: Any) -> str:
        return (str(v or "RELATES_TO").strip() or "RELATES_TO").upper().replace(" ", "_")

class AnalysisPayload(BaseModel):
    """
    The JSON shape the model is asked for. Validation is lenient where the model
    tends to drift (priority spelling, confidence as a string, duplicate tags) and
    strict where the pipeline depends on it (summary present, entities named).
    """
    summary: SummaryOut
    entities: List[EntityOut] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    relationships: List[RelationshipOut] = Field(default_factory=list)
    priority: str = "read"
    confidence: float = 0.5

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"sentence": v.split(". ")[0].strip(), "paragraph": v.strip()}
        return v

    @field_validator("entities", mode="before")
    @classmethod
    def _drop_unnamed(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [e for e in v if isinstance(e, dict) and str(e.get("name") or "").strip()]

    @field_validator("relationships", mode="before")
    @classmethod
    def _drop_partial(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        return [r for r in v if isinstance(r, dict) and r.get("from") and r.get("to")]

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        if not isinstance(v, list):
            return []
        seen, out = set(), []
        for t in v:
            t = str(t).strip().lower()
            if t and t not in seen:
                seen.add(t)
                out.append(t)
        return out

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        p = str(v or "").strip().lower().replace("_", "-").replace(" ", "-")
        if p == "deepdive":
            p = "deep-dive"
        return p if p in PRIORITIES else "read"

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float:
        try:
            c = float(v)
        except (TypeError, ValueError):
            return 0.5
        if c != c:  # NaN
            return 0.5
        return min(1.0, max(0.0, c))

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

# ---- Request bodies ----

class AnalyzeIn(BaseModel):
    url: HttpUrl
    source: Source = "web"

class ManualContentIn(BaseModel):
    title: str
    url: HttpUrl
    text: str = Field(min_length=1)
    source: Source = "manual"

class FeedIn(BaseModel):
    url: HttpUrl
    title: Optional[str] = None

class PodcastIn(BaseModel):
    url: HttpUrl

class FeedPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")
    fetch_interval_seconds: Optional[int] = Field(None, alias="fetchIntervalSeconds", ge=300)

class DigestIn(BaseModel):
    timeframe: Timeframe = "weekly"
    background: bool = False  # queue a GENERATE_DIGEST job instead of generating inline

class UserSettingsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    digest_email: Optional[str] = Field(None, alias="digestEmail")
    digest_frequency: Optional[str] = Field(None, alias="digestFrequency")

    @field_validator("digest_frequency")
    @classmethod
    def _frequency(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_timeframe(v)

class DigestContentIn(BaseModel):
    title: str
    url: str = ""
    summary: Any = ""
    priority: str = "read"
    tags: List[str] = Field(default_factory=list)
    source: str = ""

class ComposeDigestIn(BaseModel):
    timeframe: Timeframe = "weekly"
    content: List[DigestContentIn] = Field(default_factory=list)
