from contextlib import asynccontextmanager, suppress
import asyncio
import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .core.database import create_db_and_tables
from .core.settings import settings
from .core.vpn import VpnCipher
from .models.Audit import AuditLog # Import models to register them with SQLModel
from .models.Auth import CaptchaRequiredResponse, ErrorDetails, ErrorResponse
from .auth.exceptions import (
    CaptchaRequiredError,
    LoginCredentialsError,
    LoginProtocolError,
    LoginVerificationError,
    NoSession,
    TokenInvalid,
)
from .auth.service import AuthService
from .auth.sessions import SessionStore
from .auth.tokens import TokenService
from .user.service import UserInfoError, UserService

from .auth.router import router as auth_router
from .user.router import router as user_router

logger = logging.getLogger(__name__)

def configure_logging():
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

async def sweep_sessions(store: SessionStore, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            store.sweep_expired()
        except Exception:
            logger.exception("Session sweep failed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    sweeper = app.state.sweeper = asyncio.create_task(
        sweep_sessions(app.state.session_store, settings.SESSION_SWEEP_INTERVAL_SECONDS)
    )
    logger.info("%s started", settings.PROJECT_NAME)
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    app.state.session_store.close_all()

def _error(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetails(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)

def register_exception_handlers(app: FastAPI):
    bearer = {"WWW-Authenticate": "Bearer"}

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, "invalid_request", "Invalid request body")

    @app.exception_handler(LoginCredentialsError)
    async def bad_credentials(request: Request, exc: LoginCredentialsError):
        return _error(status.HTTP_401_UNAUTHORIZED, "invalid_credentials", exc.message)

    @app.exception_handler(LoginVerificationError)
    async def unverified(request: Request, exc: LoginVerificationError):
        return _error(status.HTTP_401_UNAUTHORIZED, "verification_failed", "Login could not be verified, check username and password")

    @app.exception_handler(CaptchaRequiredError)
    async def captcha_required(request: Request, exc: CaptchaRequiredError):
        body = CaptchaRequiredResponse(
            error=ErrorDetails(code="captcha_required", message=str(exc)),
            captcha=exc.captcha,
            execution=exc.execution,
            client_id=exc.client_id,
        )
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump())

    @app.exception_handler(LoginProtocolError)
    async def upstream_login_failure(request: Request, exc: LoginProtocolError):
        logger.error("%s", exc)
        return _error(status.HTTP_502_BAD_GATEWAY, "upstream_error", f"SSO provider failure during '{exc.step}'")

    @app.exception_handler(UserInfoError)
    async def upstream_failure(request: Request, exc: UserInfoError):
        return _error(status.HTTP_502_BAD_GATEWAY, "upstream_error", str(exc))

    @app.exception_handler(TokenInvalid)
    async def invalid_token(request: Request, exc: TokenInvalid):
        return _error(status.HTTP_401_UNAUTHORIZED, "invalid_token", str(exc) or "Invalid or expired JWT token", bearer)

    @app.exception_handler(NoSession)
    async def no_session(request: Request, exc: NoSession):
        return _error(status.HTTP_401_UNAUTHORIZED, "unauthenticated", str(exc), bearer)

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", "Internal server error")

def create_app(store: SessionStore | None = None, vpn: VpnCipher | None = None) -> FastAPI:
    """
    Composition root: one SessionStore per process, injected into every service.
    """
    if vpn is None:
        vpn = VpnCipher.from_settings()
    # An empty store has len() == 0, so compare against None
    if store is None:
        store = SessionStore.from_settings(TokenService.from_settings())

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.session_store = store
    app.state.auth_service = AuthService.from_settings(store, vpn)
    app.state.user_service = UserService(store, vpn)

    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(user_router)

    @app.get("/")
    def read_root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}"}

    return app

configure_logging()
app = create_app()

def serve():
    """Entry point for ``ubaa-server``."""
    uvicorn.run(app, host=settings.SERVER_HOST, port=settings.SERVER_PORT, log_level=settings.LOG_LEVEL.lower())

if __name__ == "__main__":
    serve()
