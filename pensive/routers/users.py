from fastapi import APIRouter, Depends

from ..deps import current_user_id, get_services
from ..schema import UserSettingsIn
from ..services import Services
from ..users import user_to_dict

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
def me(user_id: str = Depends(current_user_id), services: Services = Depends(get_services)):
    return user_to_dict(services.users.get_user(user_id))


@router.put("/me")
def update_me(
    body: UserSettingsIn,
    user_id: str = Depends(current_user_id),
    services: Services = Depends(get_services),
):
    user = services.users.update_settings(
        user_id,
        email=body.email,
        digest_email=body.digest_email,
        digest_frequency=body.digest_frequency,
    )
    return user_to_dict(user)
