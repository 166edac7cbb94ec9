"""Value types shared by the stores and the ceremony orchestrator."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Optional, Tuple

from fido2.webauthn import AuthenticatorTransport

from .errors import ValidationError

__all__ = [
    "Challenge",
    "Credential",
    "SessionToken",
    "StepUpToken",
    "User",
    "fingerprint",
    "parse_transports",
]


logger = logging.getLogger(__name__)

_TRANSPORTS_BY_VALUE = {transport.value: transport for transport in AuthenticatorTransport}


def parse_transports(raw_values: Optional[Iterable[Any]], *, strict: bool = True) -> FrozenSet[AuthenticatorTransport]:
    """Coerce transport hints into the closed :class:`AuthenticatorTransport` set.

    Unknown values are rejected with :class:`ValidationError`, or skipped when
    ``strict`` is false (browsers report hints this library does not know).
    """

    if raw_values is None:
        return frozenset()
    if isinstance(raw_values, (str, bytes, bytearray)):
        if not strict:
            return frozenset()
        raise ValidationError("transports must be a list of values")

    parsed = set()
    for value in raw_values:
        if isinstance(value, AuthenticatorTransport):
            parsed.add(value)
            continue
        transport = _TRANSPORTS_BY_VALUE.get(value.strip().lower()) if isinstance(value, str) else None
        if transport is None:
            if strict:
                raise ValidationError(f"unsupported transport value {value!r}")
            logger.debug("Ignoring unrecognised transport hint %r", value)
            continue
        parsed.add(transport)
    return frozenset(parsed)


def fingerprint(value: Any) -> str:
    """Short, log-safe prefix of a secret value."""

    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).hex()
    text = str(value)
    return f"{text[:8]}..." if len(text) > 8 else text


@dataclass(frozen=True)
class Credential:
    credential_id: bytes
    public_key: bytes
    sign_count: int = 0
    device_backed: bool = False
    transports: FrozenSet[AuthenticatorTransport] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.credential_id, (bytes, bytearray)) or not self.credential_id:
            raise ValidationError("credential ID must be a non-empty byte string")
        if not isinstance(self.public_key, (bytes, bytearray)) or not self.public_key:
            raise ValidationError("public key must be a non-empty byte string")
        if isinstance(self.sign_count, bool) or not isinstance(self.sign_count, int) or self.sign_count < 0:
            raise ValidationError("signature counter must be a non-negative integer")
        object.__setattr__(self, "credential_id", bytes(self.credential_id))
        object.__setattr__(self, "public_key", bytes(self.public_key))
        object.__setattr__(self, "transports", parse_transports(self.transports))


@dataclass(frozen=True)
class User:
    user_id: str
    username: str
    credentials: Tuple[Credential, ...] = ()

    def credential(self, credential_id: bytes) -> Optional[Credential]:
        for credential in self.credentials:
            if credential.credential_id == credential_id:
                return credential
        return None

    @property
    def credential_ids(self) -> Tuple[bytes, ...]:
        return tuple(credential.credential_id for credential in self.credentials)


@dataclass(frozen=True)
class Challenge:
    """Single-use random value bound to one ceremony session identifier."""

    value: bytes
    session_id: str
    created_at: float
    ttl: float
    username: Optional[str] = None

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class SessionToken:
    token: str
    user_id: str
    created_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class StepUpToken:
    token: str
    user_id: str
    session_token: str = field(repr=False)
    created_at: float = 0.0
    ttl: float = 0.0

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
