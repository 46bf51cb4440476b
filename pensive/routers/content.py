from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..deps import current_user_id, get_services
from ..logging_setup import get_logger
from ..schema import AnalyzeIn, ManualContentIn
from ..services import Services

logger = get_logger("pensive.routes.content")

router = APIRouter(prefix="/content", tags=["content"])


@router.post("/analyze")
def analyze_url(
    body: AnalyzeIn,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    logger.info("ANALYZE_REQUEST", extra={"url": body.url, "source": body.source})
    return services.pipeline.analyze_url(user_id, body.url, body.source)


@router.post("")
def add_content(
    body: ManualContentIn,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return services.pipeline.ingest_text(user_id, body.title, body.url, body.text, body.source)


@router.get("")
def list_content(
    page: int = 1,
    limit: int = 50,
    source: Optional[str] = None,
    priority: Optional[str] = None,
    timeframe: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    result = services.content.get_user_content(
        user_id, page=page, limit=limit, source=source, priority=priority, timeframe=timeframe
    )
    return result.to_dict()


@router.get("/search")
def search_content(
    q: str = "",
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return {"items": [e.to_dict() for e in services.content.search(user_id, q, limit=limit)]}


@router.get("/{content_id}")
def get_content(
    content_id: str,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    entry = services.content.get_content(user_id, content_id)
    out = entry.to_dict(include_text=True)
    out["analysisHistory"] = [
        {"version": a.version, "mode": a.mode, "priority": a.priority, "createdAt": a.created_at.isoformat()}
        for a in services.content.analysis_history(content_id)
    ]
    return out


@router.delete("/{content_id}")
def delete_content(
    content_id: str,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    services.pipeline.delete(user_id, content_id)
    return {"success": True}


@router.post("/{content_id}/reanalyze")
def reanalyze(
    content_id: str,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    analysis = services.pipeline.reanalyze(user_id, content_id)
    return {"contentId": content_id, "analysis": analysis.to_payload()}
