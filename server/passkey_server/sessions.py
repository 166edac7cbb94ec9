"""Session and step-up token issuance."""
from __future__ import annotations

import abc
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from .challenges import LAZY_SWEEP_LIMIT
from .errors import NotAuthenticated
from .models import SessionToken, StepUpToken, fingerprint

__all__ = [
    "InMemorySessionManager",
    "SESSION_TTL",
    "STEP_UP_TTL",
    "SessionManager",
]

logger = logging.getLogger(__name__)

SESSION_TTL = 30 * 24 * 60 * 60
STEP_UP_TTL = 5 * 60


class SessionManager(abc.ABC):
    @abc.abstractmethod
    def issue_session(self, user_id: str) -> SessionToken:
        ...

    @abc.abstractmethod
    def validate_session(self, token: Optional[str]) -> str:
        """Return the bound user ID or raise :class:`NotAuthenticated`."""

    @abc.abstractmethod
    def revoke_session(self, token: Optional[str]) -> None:
        ...

    @abc.abstractmethod
    def issue_step_up(self, session_token: Optional[str]) -> StepUpToken:
        """Mint a single-use step-up token for a currently valid session."""

    @abc.abstractmethod
    def check_step_up(self, token: Optional[str], session_token: Optional[str]) -> str:
        """Return the step-up's user ID without consuming it.

        Raises :class:`NotAuthenticated` under the same conditions as
        :meth:`consume_step_up`.
        """

    @abc.abstractmethod
    def consume_step_up(self, token: Optional[str], session_token: Optional[str]) -> str:
        """Remove the step-up token and return its user ID.

        Raises :class:`NotAuthenticated` if the token is unknown, expired,
        was minted for a different session, or its session is no longer valid.
        """

    @abc.abstractmethod
    def sweep_expired(self, now: Optional[float] = None) -> int:
        ...

class InMemorySessionManager(SessionManager):
    def __init__(
        self,
        session_ttl: float = SESSION_TTL,
        step_up_ttl: float = STEP_UP_TTL,
        *,
        clock: Callable[[], float] = time.time,
        lazy_sweep_limit: int = LAZY_SWEEP_LIMIT,
    ) -> None:
        self._session_ttl = session_ttl
        self._step_up_ttl = step_up_ttl
        self._clock = clock
        self._lazy_sweep_limit = lazy_sweep_limit
        self._issued_since_sweep = 0
        self._sessions: Dict[str, SessionToken] = {}
        self._step_ups: Dict[str, StepUpToken] = {}
        self._lock = threading.Lock()

    @property
    def session_ttl(self) -> float:
        return self._session_ttl

    @property
    def step_up_ttl(self) -> float:
        return self._step_up_ttl

    def _maybe_sweep_locked(self, now: float) -> None:
        self._issued_since_sweep += 1
        if (
            len(self._sessions) + len(self._step_ups) <= self._lazy_sweep_limit
            or self._issued_since_sweep >= self._lazy_sweep_limit
        ):
            self._sweep_locked(now)

    def issue_session(self, user_id: str) -> SessionToken:
        session = SessionToken(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=self._clock(),
            ttl=self._session_ttl,
        )
        with self._lock:
            self._maybe_sweep_locked(session.created_at)
            self._sessions[session.token] = session
        logger.info("Issued session %s for user %s", fingerprint(session.token), user_id)
        return session

    def _live_session_locked(self, token: Optional[str], now: float) -> SessionToken:
        session = self._sessions.get(token) if token else None
        if session is None:
            raise NotAuthenticated("unknown session token")
        if session.is_expired(now):
            del self._sessions[token]
            raise NotAuthenticated(f"session {fingerprint(token)} expired")
        return session

    def validate_session(self, token: Optional[str]) -> str:
        with self._lock:
            return self._live_session_locked(token, self._clock()).user_id

    def revoke_session(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            removed = self._sessions.pop(token, None)
            # Pending step-ups die with their session.
            for key in [key for key, entry in self._step_ups.items() if entry.session_token == token]:
                del self._step_ups[key]
        if removed is not None:
            logger.info("Revoked session %s for user %s", fingerprint(token), removed.user_id)

    def issue_step_up(self, session_token: Optional[str]) -> StepUpToken:
        with self._lock:
            now = self._clock()
            session = self._live_session_locked(session_token, now)
            self._maybe_sweep_locked(now)
            step_up = StepUpToken(
                token=secrets.token_urlsafe(32),
                user_id=session.user_id,
                session_token=session.token,
                created_at=now,
                ttl=self._step_up_ttl,
            )
            self._step_ups[step_up.token] = step_up
        logger.debug("Issued step-up %s for user %s", fingerprint(step_up.token), step_up.user_id)
        return step_up

    def _bound_step_up_locked(
        self,
        token: Optional[str],
        session_token: Optional[str],
        now: float,
    ) -> StepUpToken:
        step_up = self._step_ups.get(token) if token else None
        if step_up is None:
            raise NotAuthenticated("unknown step-up token")
        if step_up.is_expired(now):
            del self._step_ups[token]
            raise NotAuthenticated(f"step-up {fingerprint(token)} expired")
        if not session_token or not secrets.compare_digest(step_up.session_token, session_token):
            raise NotAuthenticated(f"step-up {fingerprint(token)} belongs to another session")
        self._live_session_locked(step_up.session_token, now)
        return step_up

    def check_step_up(self, token: Optional[str], session_token: Optional[str]) -> str:
        with self._lock:
            return self._bound_step_up_locked(token, session_token, self._clock()).user_id

    def consume_step_up(self, token: Optional[str], session_token: Optional[str]) -> str:
        with self._lock:
            step_up = self._bound_step_up_locked(token, session_token, self._clock())
            del self._step_ups[step_up.token]
            return step_up.user_id

    def sweep_expired(self, now: Optional[float] = None) -> int:
        with self._lock:
            return self._sweep_locked(self._clock() if now is None else now)

    def _sweep_locked(self, now: float) -> int:
        self._issued_since_sweep = 0
        expired_sessions = [key for key, entry in self._sessions.items() if entry.is_expired(now)]
        for key in expired_sessions:
            del self._sessions[key]
        expired_step_ups = [key for key, entry in self._step_ups.items() if entry.is_expired(now)]
        for key in expired_step_ups:
            del self._step_ups[key]
        return len(expired_sessions) + len(expired_step_ups)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions) + len(self._step_ups)
