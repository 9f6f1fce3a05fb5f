from typing import Annotated, Optional
from urllib.parse import quote, urljoin
import base64
import json
import logging
import uuid

import requests
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from ..core.settings import settings
from ..core.vpn import VpnCipher
from ..models.Auth import CaptchaInfo, LoginPreloadResponse, LoginResponse, UserData
from .cas import build_login_form, detect_captcha, extract_execution, find_login_error
from .exceptions import (
    CaptchaRequiredError,
    LoginCredentialsError,
    LoginProtocolError,
    LoginVerificationError,
    NoSession,
    TokenInvalid,
)
from .sessions import Candidate, PendingLogin, SessionStore, UserSession

logger = logging.getLogger(__name__)

# OAuth2 scheme (for extracting token from header)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login", auto_error=False)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)
STATUS_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "X-Requested-With": "XMLHttpRequest",
    "Referer": "https://uc.buaa.edu.cn/#/user/login",
}
BAD_CREDENTIALS_CODE = "10600"
BAD_CREDENTIALS_MESSAGE = "账号或密码错误"


class AuthService:
    """
    Runs the CAS handshake against the university SSO and keeps the resulting
    sessions in a SessionStore.
    """

    def __init__(
        self,
        store: SessionStore,
        vpn: VpnCipher,
        reverify_on_login: bool = True,
        max_redirects: int = 10,
        login_url: str = settings.SSO_LOGIN_URL,
        logout_url: str = settings.SSO_LOGOUT_URL,
        captcha_url: str = settings.SSO_CAPTCHA_URL,
        uc_login_url: str = settings.UC_LOGIN_URL,
        uc_status_url: str = settings.UC_STATUS_URL,
    ):
        self.store = store
        self.vpn = vpn
        self.reverify_on_login = reverify_on_login
        self.max_redirects = max_redirects
        self.login_url = login_url
        self.logout_url = logout_url
        self.captcha_url = captcha_url
        self.uc_login_url = uc_login_url
        self.uc_status_url = uc_status_url

    @classmethod
    def from_settings(cls, store: SessionStore, vpn: VpnCipher) -> "AuthService":
        return cls(
            store=store,
            vpn=vpn,
            reverify_on_login=settings.SESSION_REVERIFY_ON_LOGIN,
            max_redirects=settings.HTTP_MAX_REDIRECTS,
        )

    def login(
        self,
        username: str,
        password: str,
        captcha: Optional[str] = None,
        execution: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> LoginResponse:
        """
        Returns the verified profile and a bearer token bound to the session.

        A live session is reused (after silent re-verification) instead of
        running the SSO handshake again. A call carrying ``client_id`` picks up
        the attempt parked by a captcha challenge or a preload and submits on
        the same upstream connection.
        """
        logger.info("Login attempt for user: %s", username)
        if not (client_id or captcha):
            reused = self._reuse(username)
            if reused is not None:
                return reused

        pending = self.store.take_pending(client_id, username) if client_id else None
        candidate = pending.candidate if pending is not None else self.store.prepare(username)
        try:
            profile = self._handshake(candidate, password, captcha, execution, pending, client_id)
        except CaptchaRequiredError:
            # The candidate is parked under the challenge's client id
            raise
        except BaseException:
            candidate.release()
            raise

        _, token = self.store.commit_with_token(candidate, profile)
        logger.info("Session verified and committed for user: %s", username)
        return LoginResponse(user=profile, token=token)

    def preload(self, client_id: str) -> LoginPreloadResponse:
        """
        Opens the login page ahead of the credentials and parks the connection
        under ``client_id``, so the client can show the captcha before the user
        submits.
        """
        candidate = self.store.prepare("")
        try:
            login_html, execution = self._load_login_page(candidate)
            captcha = detect_captcha(login_html, self.captcha_url)
            if captcha is not None:
                captcha = self._with_image(candidate.transport, captcha)
        except BaseException:
            candidate.release()
            raise

        self.store.hold(client_id, candidate, execution, login_html)
        logger.info("Login page preloaded for client %s (captcha=%s)", client_id, captcha is not None)
        return LoginPreloadResponse(
            captcha_required=captcha is not None,
            captcha=captcha,
            execution=execution,
            client_id=client_id,
        )

    def captcha_image(self, captcha_id: str, client_id: Optional[str] = None) -> Optional[bytes]:
        """
        Fetches a captcha image. The SSO binds the image to the connection that
        loaded the login page, so a parked attempt's transport is used when one
        exists for ``client_id``.
        """
        transport = self.store.pending_transport(client_id) if client_id else None
        scratch = None
        if transport is None:
            scratch = self.store.prepare("")
            transport = scratch.transport
        try:
            return self._fetch_captcha(transport, captcha_id)
        finally:
            if scratch is not None:
                scratch.release()

    def logout(self, token: str) -> bool:
        """
        Ends the session behind a token. The upstream SSO logout is best effort.
        """
        session = self.store.resolve_token(token)
        if session is None:
            return False
        try:
            response = session.transport.get(self.vpn.to_vpn_url(self.logout_url))
            logger.debug("SSO logout response status: %s", response.status_code)
        except requests.RequestException as e:
            logger.warning("SSO logout failed for user %s: %s", session.identity, e)
        return self.store.invalidate_by_token(token)

    def verify_session(self, session: UserSession) -> Optional[UserData]:
        """Asks the user center whether the session's cookies are still good."""
        try:
            profile, _ = self._read_status(session.transport)
        except requests.RequestException as e:
            logger.warning("Status check for %s failed: %s", session.identity, e)
            return None
        return profile

    def _reuse(self, username: str) -> Optional[LoginResponse]:
        session = self.store.get(username)
        if session is None:
            return None

        if self.reverify_on_login and self.verify_session(session) is None:
            logger.info("Cached session for %s is no longer valid, re-authenticating", username)
            self.store.invalidate(username, expected=session)
            return None

        try:
            token = self.store.issue_token(username)
        except NoSession:
            # Evicted between the lookup and now
            return None
        logger.info("Reusing cached session for user: %s", username)
        return LoginResponse(user=session.profile, token=token)

    def _load_login_page(self, candidate: Candidate) -> tuple[str, str]:
        """Returns (page html, execution token) for a fresh login page."""
        username = candidate.identity
        try:
            page = candidate.transport.get(self.vpn.to_vpn_url(self.login_url), allow_redirects=False)
        except requests.RequestException as e:
            raise LoginProtocolError(username, "load login page", str(e)) from e
        if page.status_code != 200:
            raise LoginProtocolError(username, "load login page", f"status={page.status_code}")

        login_html = page.text
        execution = extract_execution(login_html)
        if not execution:
            raise LoginProtocolError(username, "scrape execution token", "execution token missing")
        logger.debug("Got execution token: %s...", execution[:10])
        return login_html, execution

    def _captcha_image_url(self, captcha_id: str) -> str:
        return self.vpn.to_vpn_url(f"{self.captcha_url}?captchaId={quote(captcha_id, safe='')}")

    def _fetch_captcha(self, transport: requests.Session, captcha_id: str) -> Optional[bytes]:
        try:
            response = transport.get(self._captcha_image_url(captcha_id))
        except requests.RequestException as e:
            logger.warning("Captcha image %s could not be fetched: %s", captcha_id, e)
            return None
        if response.status_code != 200 or not response.content:
            logger.debug("Captcha image response status: %s", response.status_code)
            return None
        return response.content

    def _with_image(self, transport: requests.Session, captcha: CaptchaInfo) -> CaptchaInfo:
        image = self._fetch_captcha(transport, captcha.id)
        if image is None:
            return captcha
        return captcha.model_copy(update={"base64_image": base64.b64encode(image).decode("ascii")})

    def _challenge(
        self,
        candidate: Candidate,
        captcha: CaptchaInfo,
        execution: str,
        login_html: str,
        client_id: Optional[str],
    ) -> CaptchaRequiredError:
        client_id = client_id or uuid.uuid4().hex
        captcha = self._with_image(candidate.transport, captcha)
        self.store.hold(client_id, candidate, execution, login_html)
        logger.info("CAPTCHA required for user: %s (client %s)", candidate.identity, client_id)
        return CaptchaRequiredError(captcha, execution, client_id)

    def _handshake(
        self,
        candidate: Candidate,
        password: str,
        captcha: Optional[str] = None,
        execution: Optional[str] = None,
        pending: Optional[PendingLogin] = None,
        client_id: Optional[str] = None,
    ) -> UserData:
        username = candidate.identity
        transport = candidate.transport
        login_url = self.vpn.to_vpn_url(self.login_url)

        # 1. Login page and its one-time execution token, reused from a parked attempt if any
        if pending is not None:
            login_html, execution = pending.login_html, execution or pending.execution
        else:
            login_html, execution = self._load_login_page(candidate)

        # An answer only fits the image shown on the parked page
        if pending is None or not captcha:
            challenge = detect_captcha(login_html, self.captcha_url)
            if challenge is not None:
                raise self._challenge(candidate, challenge, execution, login_html, client_id)

        # 2. Credentials, following the SSO redirect chain by hand
        form_data = build_login_form(login_html, username, password, execution, captcha)
        try:
            submitted = transport.post(login_url, data=form_data, allow_redirects=False)
            submit_html = submitted.text
            self._follow_redirects(transport, submitted)
        except requests.RequestException as e:
            raise LoginProtocolError(username, "submit credentials", str(e)) from e
        logger.debug("Login form submitted. Response status: %s", submitted.status_code)

        # 3. Hand the SSO identity over to the user center
        try:
            transport.get(self.vpn.to_vpn_url(self.uc_login_url))
        except requests.RequestException as e:
            raise LoginProtocolError(username, "complete redirect", str(e)) from e

        # 4. Verify
        try:
            profile, code = self._read_status(transport)
        except requests.RequestException as e:
            raise LoginProtocolError(username, "verify session", str(e)) from e
        if profile is not None:
            return profile

        message = find_login_error(submit_html) or find_login_error(login_html)
        if message:
            logger.warning("Login rejected for %s: %s", username, message)
            raise LoginCredentialsError(message)
        if code is not None and str(code) == BAD_CREDENTIALS_CODE:
            raise LoginCredentialsError(BAD_CREDENTIALS_MESSAGE)
        raise LoginVerificationError(username, f"status code={code}")

    def _follow_redirects(self, transport: requests.Session, response: requests.Response) -> requests.Response:
        hops = 0
        while response.status_code in REDIRECT_STATUSES and hops < self.max_redirects:
            location = response.headers.get("Location")
            if not location:
                break
            target = urljoin(response.url, location)
            logger.debug("Following redirect to: %s", target)
            response = transport.get(target, allow_redirects=False)
            hops += 1
        return response

    def _read_status(self, transport: requests.Session) -> tuple[Optional[UserData], Optional[object]]:
        """
        Returns (profile, code). The profile is None unless the status
        endpoint answered 200 with JSON and a zero code.
        """
        response = transport.get(self.vpn.to_vpn_url(self.uc_status_url), headers=STATUS_HEADERS)
        if response.status_code != 200:
            logger.debug("Status API response status: %s", response.status_code)
            return None, None

        body = response.text.lstrip()
        if not body.startswith(("{", "[")):
            logger.warning("Status API returned non-JSON payload, likely an SSO redirect")
            return None, None
        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Status API returned malformed JSON")
            return None, None
        if not isinstance(payload, dict):
            return None, None

        code = payload.get("code")
        if code is None or str(code) != "0":
            return None, code
        data = payload.get("data")
        if not isinstance(data, dict):
            return None, code
        return UserData(name=str(data.get("name") or ""), schoolid=str(data.get("schoolid") or "")), code


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store

def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service

def get_bearer_token(token: Annotated[Optional[str], Depends(oauth2_scheme)]) -> str:
    if not token:
        raise TokenInvalid("Missing bearer token")
    return token

def get_current_session(
    token: Annotated[str, Depends(get_bearer_token)],
    store: Annotated[SessionStore, Depends(get_session_store)],
) -> UserSession:
    session = store.resolve_token(token)
    if session is None:
        raise TokenInvalid("Invalid or expired JWT token")
    return session
