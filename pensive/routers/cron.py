from fastapi import APIRouter, Depends

from .. import tasks
from ..deps import get_services, require_cron_secret
from ..logging_setup import get_logger
from ..services import Services

logger = get_logger("pensive.routes.cron")

# GET as well as POST: hosted cron runners typically only issue GETs
router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.api_route("/process-rss-feeds", methods=["GET", "POST"])
def process_rss_feeds(services: Services = Depends(get_services)):
    logger.info("CRON_PROCESS_RSS_FEEDS")
    return tasks.poll_feeds(services)


@router.api_route("/send-digests", methods=["GET", "POST"])
def send_digests(services: Services = Depends(get_services)):
    logger.info("CRON_SEND_DIGESTS")
    return tasks.send_digests(services)


@router.api_route("/process-jobs", methods=["GET", "POST"])
def process_jobs(services: Services = Depends(get_services)):
    logger.info("CRON_PROCESS_JOBS")
    return tasks.process_jobs(services)
