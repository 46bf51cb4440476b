# pensive/deps.py
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from . import config
from .services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user_id(
    x_user_id: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> str:
    """The acting user, from X-User-Id. Unknown ids get a User row on first use."""
    uid = (x_user_id or "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    services.users.ensure_user(uid)
    return uid


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    secret = config.CRON_SECRET
    if not secret or authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")
