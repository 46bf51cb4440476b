from fastapi import APIRouter, Depends, Response

from ..deps import current_user_id, get_services
from ..digest import digest_to_dict
from ..models import JobType
from ..schema import DigestIn
from ..services import Services

router = APIRouter(prefix="/digests", tags=["digests"])


@router.post("/generate")
def generate_digest(
    body: DigestIn,
    response: Response,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    if body.background:
        job = services.queue.enqueue(JobType.GENERATE_DIGEST, {"timeframe": body.timeframe}, user_id=user_id)
        response.status_code = 202
        return {"jobId": job.id}
    digest = services.digests.generate_digest(user_id, body.timeframe)
    return digest_to_dict(digest, include_html=True)


@router.get("")
def list_digests(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return {"digests": services.digests.list_digests(user_id)}


@router.get("/{digest_id}")
def get_digest(digest_id: str, user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return digest_to_dict(services.digests.get_digest(user_id, digest_id), include_html=True)
