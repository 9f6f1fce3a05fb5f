from typing import Annotated, Optional
import http
from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlmodel import Session
from ..core.database import get_session
from ..models.Auth import (
    ErrorDetails,
    ErrorResponse,
    LoginPreloadRequest,
    LoginPreloadResponse,
    LoginRequest,
    LoginResponse,
    SessionStatusResponse,
)
from ..audit.service import log_event
from .exceptions import LoginError, TokenInvalid
from .service import AuthService, get_auth_service, get_bearer_token, get_current_session
from .sessions import UserSession

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

def _action(method: str, path: str, code: int) -> str:
    return f"{method} {path} {code} {http.HTTPStatus(code).phrase}"

@router.post("/login", response_model=LoginResponse)
def login(
    login_data: LoginRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
    db: Session = Depends(get_session),
):
    """
    Login against the university SSO and get a bearer token bound to the session.
    """
    try:
        response = service.login(
            login_data.username,
            login_data.password,
            captcha=login_data.captcha,
            execution=login_data.execution,
            client_id=login_data.client_id,
        )
    except LoginError as e:
        log_event(db, login_data.username, "POST /login failed", type(e).__name__)
        raise

    log_event(db, login_data.username, _action("POST", "/login", status.HTTP_200_OK), "Login successful")
    return response

@router.post("/preload", response_model=LoginPreloadResponse)
def preload(
    preload_data: LoginPreloadRequest,
    service: Annotated[AuthService, Depends(get_auth_service)],
):
    """
    Open the SSO login page ahead of the credentials. When a captcha is shown,
    the answer is sent to /login together with the same client_id.
    """
    return service.preload(preload_data.client_id)

@router.get("/captcha/{captcha_id}")
def captcha_image(
    captcha_id: str,
    service: Annotated[AuthService, Depends(get_auth_service)],
    client_id: Optional[str] = None,
):
    """
    Captcha image proxied from the SSO, over the parked connection of client_id if given.
    """
    image = service.captcha_image(captcha_id, client_id)
    if image is None:
        body = ErrorResponse(error=ErrorDetails(code="captcha_not_found", message="CAPTCHA image not found"))
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=body.model_dump())
    return Response(content=image, media_type="image/jpeg")

@router.get("/status", response_model=SessionStatusResponse)
def session_status(current: Annotated[UserSession, Depends(get_current_session)]):
    """
    Report the session behind the bearer token.
    """
    return SessionStatusResponse(
        user=current.profile,
        last_activity=current.last_renewed_at,
        authenticated_at=current.created_at,
    )

@router.post("/logout")
def logout(
    token: Annotated[str, Depends(get_bearer_token)],
    service: Annotated[AuthService, Depends(get_auth_service)],
    db: Session = Depends(get_session),
):
    """
    Logout: drops the server-side session and every token bound to it.
    """
    identity = service.store.tokens.validate(token)
    if not service.logout(token):
        log_event(db, identity, _action("POST", "/logout", status.HTTP_401_UNAUTHORIZED), "No live session for token")
        raise TokenInvalid("Invalid or expired JWT token")

    log_event(db, identity, _action("POST", "/logout", status.HTTP_200_OK), "Logged out successfully")
    return {"message": "Logged out successfully"}
