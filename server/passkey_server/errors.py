"""Error taxonomy for passkey ceremonies.

Every error carries a stable ``code`` and a human readable ``category``. Only
those two values are ever reported to clients; the exception message and its
``__cause__`` chain stay in the server log.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

__all__ = [
    "AssertionVerificationError",
    "AttestationError",
    "CeremonyError",
    "CeremonyState",
    "ChallengeExpired",
    "ChallengeMissing",
    "CredentialIdCollision",
    "NoCredentials",
    "NotAuthenticated",
    "ReplayDetected",
    "UnknownCredential",
    "UnknownUser",
    "UsernameTaken",
    "ValidationError",
]


class CeremonyState(str, Enum):
    IDLE = "idle"
    CHALLENGE_ISSUED = "challenge_issued"
    VERIFICATION_REQUESTED = "verification_requested"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (CeremonyState.VERIFIED, CeremonyState.FAILED, CeremonyState.EXPIRED)


class CeremonyError(Exception):
    code = "ceremony_error"
    category = "The request could not be completed."
    status = 400

    def __init__(self, detail: Optional[str] = None, *, state: CeremonyState = CeremonyState.FAILED) -> None:
        super().__init__(detail or self.category)
        self.detail = detail
        self.state = state

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.code, "message": self.category}


class ValidationError(CeremonyError):
    code = "validation_error"
    category = "The request was malformed."


class UsernameTaken(CeremonyError):
    code = "username_taken"
    category = "Username already taken."
    status = 409


class UnknownUser(CeremonyError):
    code = "unknown_user"
    category = "User not found."
    status = 404


class NoCredentials(CeremonyError):
    code = "no_credentials"
    category = "No credentials registered for this user."


class ChallengeMissing(CeremonyError):
    code = "challenge_missing"
    category = "Challenge not found. Start the ceremony again."


class ChallengeExpired(CeremonyError):
    code = "challenge_expired"
    category = "Challenge expired. Start the ceremony again."

    def __init__(self, detail: Optional[str] = None, *, state: CeremonyState = CeremonyState.EXPIRED) -> None:
        super().__init__(detail, state=state)


class NotAuthenticated(CeremonyError):
    code = "not_authenticated"
    category = "Not authenticated."
    status = 401


class AttestationError(CeremonyError):
    code = "attestation_error"
    category = "Registration verification failed."


class AssertionVerificationError(CeremonyError):
    code = "assertion_error"
    category = "Authentication verification failed."


class UnknownCredential(AssertionVerificationError):
    code = "unknown_credential"
    category = "Authenticator not recognised for this user."


class ReplayDetected(CeremonyError):
    code = "replay_detected"
    category = "Authenticator signature counter did not increase."
    status = 403


class CredentialIdCollision(CeremonyError):
    code = "credential_id_collision"
    category = "This authenticator is already registered."
    status = 409
