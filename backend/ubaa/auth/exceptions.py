from typing import Optional


class LoginError(Exception):
    """Base class for every way a login attempt can fail."""


class LoginProtocolError(LoginError):
    """The identity provider was unreachable or answered with something unusable."""

    def __init__(self, username: str, step: str, reason: str = ""):
        self.username = username
        self.step = step
        self.reason = reason
        message = f"Login protocol failure for {username} at step '{step}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class LoginCredentialsError(LoginError):
    """The identity provider rejected the credentials; message comes from its page."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class LoginVerificationError(LoginError):
    """Credentials were submitted but the status endpoint did not confirm the login."""

    def __init__(self, username: str, reason: str = ""):
        self.username = username
        self.reason = reason
        super().__init__(f"Could not verify login for {username}" + (f": {reason}" if reason else ""))


class CaptchaRequiredError(LoginError):
    """The login page wants a captcha. ``client_id`` names the parked attempt to resubmit on."""

    def __init__(self, captcha, execution: str = "", client_id: Optional[str] = None):
        self.captcha = captcha
        self.execution = execution
        self.client_id = client_id
        super().__init__("CAPTCHA verification required")


class NoSession(Exception):
    """A caller assumed an authenticated identity that has no live session."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Session for {identity} is not available or has expired")


class TokenInvalid(Exception):
    """Bearer token failed the signature, expiry or live-session check."""
