from fastapi import APIRouter, Depends, Response

from ..deps import current_user_id, get_services
from ..feeds import feed_to_dict
from ..logging_setup import get_logger
from ..models import JobType
from ..schema import FeedIn, FeedPatch
from ..services import Services

logger = get_logger("pensive.routes.feeds")

router = APIRouter(prefix="/feeds", tags=["feeds"])


@router.get("")
def list_feeds(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return {"feeds": [feed_to_dict(f) for f in services.feeds.list_feeds(user_id)]}


@router.post("")
def subscribe(
    body: FeedIn,
    response: Response,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    feed, created = services.feeds.subscribe(user_id, body.url, body.title)
    response.status_code = 201 if created else 200
    return feed_to_dict(feed)


@router.patch("/{feed_id}")
def update_feed(
    feed_id: str,
    body: FeedPatch,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    feed = services.feeds.update_feed(
        user_id,
        feed_id,
        title=body.title,
        is_active=body.is_active,
        fetch_interval_seconds=body.fetch_interval_seconds,
    )
    return feed_to_dict(feed)


@router.delete("/{feed_id}")
def unsubscribe(feed_id: str, user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    services.feeds.unsubscribe(user_id, feed_id)
    return {"success": True}


@router.post("/{feed_id}/refresh", status_code=202)
def refresh_feed(feed_id: str, user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    services.feeds.get_feed(user_id, feed_id)  # ownership check
    job = services.queue.enqueue(JobType.FETCH_RSS, {"feedId": feed_id}, user_id=user_id)
    logger.info("FEED_REFRESH_QUEUED", extra={"feed_id": feed_id, "job_id": job.id})
    return {"jobId": job.id}
