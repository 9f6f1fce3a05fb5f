from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from jose import JWTError, jwt

from ..core.settings import settings

logger = logging.getLogger(__name__)


class TokenService:
    """
    Issues and checks the HMAC-signed bearer tokens handed to clients.

    A token only names its subject; whether it still grants access is decided
    by the session store, which must also hold a live session for that subject.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "ubaa-server",
        audience: str = "ubaa-users",
    ):
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience

    @classmethod
    def from_settings(cls) -> "TokenService":
        return cls(
            secret=settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
        )

    def issue(self, identity: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": identity,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "username": identity,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def validate(self, token: str) -> Optional[str]:
        """
        Returns the subject if signature, issuer, audience and expiry all check out.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as e:
            logger.debug("Rejected bearer token: %s", e)
            return None
        return payload.get("sub")

    def peek_subject_unsafe(self, token: str) -> Optional[str]:
        """
        Reads the subject WITHOUT checking the signature. Diagnostics only.
        """
        try:
            return jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            return None

    def is_expired(self, token: str) -> bool:
        # Anything we cannot decode counts as expired
        try:
            exp = jwt.get_unverified_claims(token).get("exp")
        except JWTError:
            return True
        if exp is None:
            return True
        try:
            return float(exp) <= datetime.now(timezone.utc).timestamp()
        except (TypeError, ValueError):
            return True
