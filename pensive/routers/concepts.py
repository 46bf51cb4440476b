from fastapi import APIRouter, Depends, Query

from ..deps import current_user_id, get_services
from ..services import Services

router = APIRouter(prefix="/concepts", tags=["concepts"])


@router.get("/map")
def concept_map(
    abstraction_level: int = Query(50, alias="abstractionLevel"),
    search: str = "",
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return services.concepts.build_concept_map(user_id, abstraction_level, search)


@router.get("/{concept_id}")
def concept_details(
    concept_id: str,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    return services.concepts.concept_details(user_id, concept_id)
