from fastapi import APIRouter, Depends, HTTPException

from ..deps import current_user_id, get_services
from ..digest import render_items_html
from ..logging_setup import get_logger
from ..schema import ComposeDigestIn
from ..services import Services

logger = get_logger("pensive.routes.grok")

router = APIRouter(prefix="/grok", tags=["grok"])


@router.post("/digest")
def compose_digest(
    body: ComposeDigestIn,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    if not body.content:
        raise HTTPException(status_code=400, detail="No content provided")

    items = [c.model_dump() for c in body.content]
    html = services.analyzer.compose_digest(body.timeframe, items)
    if html is None:
        logger.info("DIGEST_TEMPLATE_FALLBACK", extra={"items": len(items)})
        html = render_items_html(body.timeframe, items)
    return {"success": True, "content": html, "itemCount": len(items)}
