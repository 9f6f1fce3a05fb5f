from typing import Annotated
from fastapi import APIRouter, Depends, Request
from ..models.UserInfo import UserInfo
from ..auth.service import get_current_session
from ..auth.sessions import UserSession
from .service import UserService

router = APIRouter(prefix="/api/v1/user", tags=["user"])

def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service

@router.get("/info", response_model=UserInfo)
def get_my_info(
    current: Annotated[UserSession, Depends(get_current_session)],
    service: Annotated[UserService, Depends(get_user_service)],
):
    """
    Get the current user's profile from the user center.
    """
    return service.fetch_user_info(current.identity)
