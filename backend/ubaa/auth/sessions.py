"""
In-memory store of authenticated upstream sessions.

Each identity maps to at most one ``UserSession`` holding its own cookie-bearing
``Transport``. Login attempts build a ``Candidate`` first and only become
visible through ``commit``; a failed or in-flight attempt never shows up in
lookups.

Mutations for one identity are serialized by a striped lock table, so logins
for unrelated identities do not contend on a single global lock. The bearer
token index is only touched while holding the owning identity's stripe.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging
import threading

from ..core.http import Transport
from ..core.settings import settings
from ..models.Auth import UserData
from .exceptions import NoSession
from .tokens import TokenService

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Candidate:
    """A login attempt under construction. Owned solely by the login call that prepared it."""
    identity: str
    transport: Transport

    def release(self):
        self.transport.close()


@dataclass
class PendingLogin:
    """A candidate parked between a captcha challenge and its answer, keyed by client id."""
    candidate: Candidate
    execution: str
    login_html: str
    created_at: datetime

    def is_expired(self, ttl: timedelta, now: datetime) -> bool:
        return now >= self.created_at + ttl


@dataclass
class UserSession:
    identity: str
    transport: Transport
    profile: UserData
    created_at: datetime
    last_renewed_at: datetime = field(default=None)

    def __post_init__(self):
        if self.last_renewed_at is None:
            self.last_renewed_at = self.created_at

    def is_expired(self, ttl: timedelta, now: datetime) -> bool:
        return now >= self.last_renewed_at + ttl

    def mark_active(self, now: datetime):
        self.last_renewed_at = now


class SessionStore:
    def __init__(
        self,
        tokens: TokenService,
        ttl: timedelta = timedelta(minutes=30),
        transport_factory: Callable[[], Transport] = Transport,
        lock_stripes: int = 64,
        clock: Callable[[], datetime] = _utcnow,
        prelogin_ttl: timedelta = timedelta(minutes=5),
    ):
        self.tokens = tokens
        self.ttl = ttl
        self._transport_factory = transport_factory
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(max(1, lock_stripes))]
        self._sessions: dict[str, UserSession] = {}
        self._token_owner: dict[str, str] = {}
        self._tokens_by_identity: dict[str, set[str]] = {}
        self.prelogin_ttl = prelogin_ttl
        self._pending_lock = threading.Lock()
        self._pending: dict[str, PendingLogin] = {}

    @classmethod
    def from_settings(cls, tokens: TokenService) -> "SessionStore":
        return cls(
            tokens=tokens,
            ttl=timedelta(minutes=settings.SESSION_TTL_MINUTES),
            lock_stripes=settings.SESSION_LOCK_STRIPES,
            prelogin_ttl=timedelta(minutes=settings.SESSION_PRELOGIN_TTL_MINUTES),
        )

    def _lock_for(self, identity: str) -> threading.Lock:
        return self._locks[hash(identity) % len(self._locks)]

    # The helpers below expect the identity's stripe to be held

    def _drop_tokens(self, identity: str):
        for token in self._tokens_by_identity.pop(identity, set()):
            self._token_owner.pop(token, None)

    def _bind_token(self, identity: str, token: str):
        self._token_owner[token] = identity
        self._tokens_by_identity.setdefault(identity, set()).add(token)

    def _evict(self, identity: str) -> Optional[UserSession]:
        session = self._sessions.pop(identity, None)
        self._drop_tokens(identity)
        return session

    def _live(self, identity: str, renew: bool = True) -> tuple[Optional[UserSession], Optional[UserSession]]:
        """Returns (live session, evicted expired session)."""
        session = self._sessions.get(identity)
        if session is None:
            return None, None
        now = self._clock()
        if session.is_expired(self.ttl, now):
            return None, self._evict(identity)
        if renew:
            session.mark_active(now)
        return session, None

    @staticmethod
    def _release(session: Optional[UserSession]):
        if session is not None:
            session.transport.close()

    # Lookups

    def get(self, identity: str) -> Optional[UserSession]:
        """
        Returns the live session for an identity, or None if absent or expired.
        Expired entries are evicted on the way.
        """
        with self._lock_for(identity):
            session, expired = self._live(identity)
        if expired is not None:
            logger.info("Session for %s expired, evicted on access", identity)
            self._release(expired)
        return session

    def require(self, identity: str) -> UserSession:
        session = self.get(identity)
        if session is None:
            raise NoSession(identity)
        return session

    def resolve_token(self, token: str) -> Optional[UserSession]:
        """
        A token resolves only if it verifies, has not expired, is still indexed
        to its subject and that subject has a live session.
        """
        identity = self.tokens.validate(token)
        if identity is None:
            return None
        with self._lock_for(identity):
            if self._token_owner.get(token) != identity:
                return None
            session, expired = self._live(identity)
        self._release(expired)
        return session

    # Lifecycle

    def prepare(self, identity: str) -> Candidate:
        """Opens a fresh transport for a login attempt. The visible map is untouched."""
        return Candidate(identity=identity, transport=self._transport_factory())

    def _publish(self, candidate: Candidate, profile: UserData, with_token: bool) -> tuple[UserSession, Optional[str]]:
        now = self._clock()
        session = UserSession(
            identity=candidate.identity,
            transport=candidate.transport,
            profile=profile,
            created_at=now,
        )
        token = None
        with self._lock_for(candidate.identity):
            previous = self._evict(candidate.identity)
            self._sessions[candidate.identity] = session
            if with_token:
                # Minted only once the session is visible
                token = self.tokens.issue(candidate.identity, self.ttl)
                self._bind_token(candidate.identity, token)
        if previous is not None and previous.transport is not session.transport:
            logger.info("Replaced existing session for %s", candidate.identity)
            self._release(previous)
        return session, token

    def commit(self, candidate: Candidate, profile: UserData) -> UserSession:
        """Publishes a verified candidate, replacing and releasing any prior session."""
        session, _ = self._publish(candidate, profile, with_token=False)
        return session

    def commit_with_token(self, candidate: Candidate, profile: UserData) -> tuple[UserSession, str]:
        return self._publish(candidate, profile, with_token=True)

    def issue_token(self, identity: str) -> str:
        """Mints and indexes an additional token for an already live session."""
        with self._lock_for(identity):
            session, expired = self._live(identity)
            token = None
            if session is not None:
                token = self.tokens.issue(identity, self.ttl)
                self._bind_token(identity, token)
        self._release(expired)
        if token is None:
            raise NoSession(identity)
        return token

    def invalidate(self, identity: str, expected: Optional[UserSession] = None) -> bool:
        """
        Removes and releases the identity's session and unbinds its tokens.

        With ``expected`` set, only that exact session is removed; a session
        committed concurrently in its place is left alone.
        """
        with self._lock_for(identity):
            current = self._sessions.get(identity)
            if current is None or (expected is not None and current is not expected):
                return False
            self._evict(identity)
        self._release(current)
        logger.info("Session for %s invalidated", identity)
        return True

    def invalidate_by_token(self, token: str) -> bool:
        identity = self.tokens.validate(token)
        if identity is None:
            return False
        with self._lock_for(identity):
            if self._token_owner.get(token) != identity:
                return False
            # Pin the session the token belongs to; a replacement committed after
            # this point gets fresh tokens and must survive
            current = self._sessions.get(identity)
        if current is None:
            return False
        return self.invalidate(identity, expected=current)

    # Captcha holds

    def hold(self, client_id: str, candidate: Candidate, execution: str, login_html: str):
        """
        Parks a candidate whose login page asked for a captcha. A previous hold
        under the same client id is replaced and its transport released.
        """
        pending = PendingLogin(candidate=candidate, execution=execution, login_html=login_html, created_at=self._clock())
        with self._pending_lock:
            previous = self._pending.pop(client_id, None)
            self._pending[client_id] = pending
        if previous is not None and previous.candidate is not candidate:
            previous.candidate.release()

    def take_pending(self, client_id: str, identity: str) -> Optional[PendingLogin]:
        """
        Hands a parked candidate over to the login call answering its captcha.
        Expired holds are released and never returned.
        """
        with self._pending_lock:
            pending = self._pending.pop(client_id, None)
        if pending is None:
            return None
        if pending.is_expired(self.prelogin_ttl, self._clock()):
            logger.info("Captcha hold %s expired before it was answered", client_id)
            pending.candidate.release()
            return None
        pending.candidate.identity = identity
        return pending

    def pending_transport(self, client_id: str) -> Optional[Transport]:
        with self._pending_lock:
            pending = self._pending.get(client_id)
        if pending is None or pending.is_expired(self.prelogin_ttl, self._clock()):
            return None
        return pending.candidate.transport

    def _sweep_pending(self) -> int:
        now = self._clock()
        with self._pending_lock:
            stale = [key for key, pending in self._pending.items() if pending.is_expired(self.prelogin_ttl, now)]
            dropped = [self._pending.pop(key) for key in stale]
        for pending in dropped:
            pending.candidate.release()
        return len(dropped)

    def sweep_expired(self) -> int:
        """Evicts every session past its TTL. Safe to run alongside lookups."""
        evicted = []
        for identity in list(self._sessions.keys()):
            with self._lock_for(identity):
                session = self._sessions.get(identity)
                if session is not None and session.is_expired(self.ttl, self._clock()):
                    evicted.append(self._evict(identity))
        for session in evicted:
            self._release(session)

        stale = [token for token in list(self._token_owner.keys()) if self.tokens.is_expired(token)]
        for token in stale:
            identity = self._token_owner.get(token)
            if identity is None:
                continue
            with self._lock_for(identity):
                if self._token_owner.pop(token, None) is not None:
                    self._tokens_by_identity.get(identity, set()).discard(token)

        held = self._sweep_pending()
        if held:
            logger.info("Dropped %d unanswered captcha hold(s)", held)
        if evicted:
            logger.info("Swept %d expired session(s)", len(evicted))
        return len(evicted)

    def close_all(self):
        for identity in list(self._sessions.keys()):
            self.invalidate(identity)
        with self._pending_lock:
            held = list(self._pending.values())
            self._pending.clear()
        for pending in held:
            pending.candidate.release()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: str) -> bool:
        return identity in self._sessions
