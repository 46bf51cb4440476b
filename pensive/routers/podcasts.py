from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ..deps import current_user_id, get_services
from ..feeds import feed_to_dict
from ..logging_setup import get_logger
from ..schema import PodcastIn
from ..services import Services

logger = get_logger("pensive.routes.podcasts")

router = APIRouter(prefix="/podcasts", tags=["podcasts"])


@router.get("/show-info")
def show_info(
    url: str = Query(..., min_length=1),
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return services.podcasts.show_info(url).to_dict()


@router.get("/latest-episodes")
def latest_episodes(
    url: str = Query(..., min_length=1),
    since: Optional[datetime] = None,
    limit: int = Query(10, ge=1, le=50),
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    result = services.podcasts.latest_episodes(url, since=since, limit=limit)
    return {
        "show": result["show"].to_dict(),
        "episodes": [ep.to_dict() for ep in result["episodes"]],
    }


@router.post("/episodes")
def analyze_episode(
    body: PodcastIn,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    logger.info("EPISODE_REQUEST", extra={"url": body.url})
    episode = services.podcasts.episode(body.url)
    return services.pipeline.ingest_episode(user_id, episode)


@router.post("")
def subscribe(
    body: PodcastIn,
    response: Response,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    """Follow a show: its RSS feed is polled like any other, with episodes stored as podcast content."""
    info = services.podcasts.show_info(body.url)
    if not info.rss_url:
        raise ValueError("Could not find an RSS feed for this podcast")
    feed, created = services.feeds.subscribe(user_id, info.rss_url, title=info.title, kind="podcast")
    response.status_code = 201 if created else 200
    return {**feed_to_dict(feed), "show": info.to_dict()}
