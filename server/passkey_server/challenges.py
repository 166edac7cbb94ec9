"""Short-lived, single-use challenge storage."""
from __future__ import annotations

import abc
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from .errors import ChallengeExpired, ChallengeMissing, ValidationError
from .models import Challenge, fingerprint

__all__ = [
    "CHALLENGE_BYTES",
    "CHALLENGE_TTL",
    "ChallengeStore",
    "InMemoryChallengeStore",
]

logger = logging.getLogger(__name__)

CHALLENGE_TTL = 5 * 60
CHALLENGE_BYTES = 32
LAZY_SWEEP_LIMIT = 10_000


class ChallengeStore(abc.ABC):
    """Holds at most one live challenge per session identifier."""

    @abc.abstractmethod
    def issue(self, session_id: str, username: Optional[str] = None) -> Challenge:
        """Create a fresh challenge for ``session_id``, replacing any prior one."""

    @abc.abstractmethod
    def consume(self, session_id: str) -> Challenge:
        """Remove and return the live challenge for ``session_id``.

        Raises :class:`ChallengeExpired` when the entry outlived its TTL (the
        entry is dropped either way) and :class:`ChallengeMissing` when there
        is nothing to consume.
        """

    @abc.abstractmethod
    def sweep_expired(self, now: Optional[float] = None) -> int:
        """Drop expired entries and return how many were removed."""

    @abc.abstractmethod
    def __len__(self) -> int:
        ...


class InMemoryChallengeStore(ChallengeStore):
    def __init__(
        self,
        ttl: float = CHALLENGE_TTL,
        *,
        clock: Callable[[], float] = time.time,
        challenge_bytes: int = CHALLENGE_BYTES,
        lazy_sweep_limit: int = LAZY_SWEEP_LIMIT,
    ) -> None:
        if challenge_bytes < 16:
            raise ValueError("challenges need at least 16 bytes of entropy")
        self._ttl = ttl
        self._clock = clock
        self._challenge_bytes = challenge_bytes
        self._lazy_sweep_limit = lazy_sweep_limit
        self._issued_since_sweep = 0
        self._entries: Dict[str, Challenge] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def issue(self, session_id: str, username: Optional[str] = None) -> Challenge:
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError("session identifier is required")

        challenge = Challenge(
            value=secrets.token_bytes(self._challenge_bytes),
            session_id=session_id,
            created_at=self._clock(),
            ttl=self._ttl,
            username=username,
        )
        with self._lock:
            # Past the limit a full scan runs once per lazy_sweep_limit issues.
            self._issued_since_sweep += 1
            if (
                len(self._entries) <= self._lazy_sweep_limit
                or self._issued_since_sweep >= self._lazy_sweep_limit
            ):
                self._sweep_locked(challenge.created_at)
            self._entries[session_id] = challenge

        logger.debug("Issued challenge for session %s", fingerprint(session_id))
        return challenge

    def consume(self, session_id: str) -> Challenge:
        with self._lock:
            challenge = self._entries.pop(session_id, None)
            now = self._clock()

        if challenge is None:
            raise ChallengeMissing(f"no challenge stored for session {fingerprint(session_id)}")
        if challenge.is_expired(now):
            raise ChallengeExpired(
                f"challenge for session {fingerprint(session_id)} expired "
                f"{now - challenge.expires_at:.0f}s ago"
            )
        return challenge

    def sweep_expired(self, now: Optional[float] = None) -> int:
        with self._lock:
            return self._sweep_locked(self._clock() if now is None else now)

    def _sweep_locked(self, now: float) -> int:
        self._issued_since_sweep = 0
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
