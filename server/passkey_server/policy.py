"""Ceremony kinds and the policy each one runs under."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

__all__ = [
    "AUTHENTICATION_POLICY",
    "CeremonyKind",
    "CeremonyPolicy",
    "REGISTRATION_POLICY",
    "STEP_UP_POLICY",
    "TokenScope",
    "policy_for",
]


class CeremonyKind(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"
    STEP_UP = "step_up"


class TokenScope(str, Enum):
    NEW_SESSION = "new_session"
    EXISTING_SESSION_STEP_UP = "existing_session_step_up"


@dataclass(frozen=True)
class CeremonyPolicy:
    kind: CeremonyKind
    user_verification: UserVerificationRequirement
    token_scope: TokenScope
    authenticator_attachment: Optional[AuthenticatorAttachment] = None
    resident_key: Optional[ResidentKeyRequirement] = None
    attestation: AttestationConveyancePreference = AttestationConveyancePreference.NONE

    def __post_init__(self) -> None:
        if self.user_verification not in (
            UserVerificationRequirement.PREFERRED,
            UserVerificationRequirement.REQUIRED,
        ):
            raise ValueError("ceremonies require preferred or required user verification")
        if self.kind == CeremonyKind.STEP_UP:
            if self.user_verification != UserVerificationRequirement.REQUIRED:
                raise ValueError("step-up ceremonies must require user verification")
            if self.token_scope != TokenScope.EXISTING_SESSION_STEP_UP:
                raise ValueError("step-up ceremonies cannot mint new sessions")
        elif self.token_scope != TokenScope.NEW_SESSION:
            raise ValueError(f"{self.kind.value} ceremonies mint new sessions")
        if self.kind != CeremonyKind.REGISTRATION and (
            self.authenticator_attachment is not None or self.resident_key is not None
        ):
            raise ValueError("authenticator selection only applies to registration")

    @property
    def creates_user(self) -> bool:
        return self.kind == CeremonyKind.REGISTRATION

    @property
    def requires_session(self) -> bool:
        return self.token_scope == TokenScope.EXISTING_SESSION_STEP_UP


REGISTRATION_POLICY = CeremonyPolicy(
    kind=CeremonyKind.REGISTRATION,
    user_verification=UserVerificationRequirement.PREFERRED,
    token_scope=TokenScope.NEW_SESSION,
    authenticator_attachment=AuthenticatorAttachment.PLATFORM,
    resident_key=ResidentKeyRequirement.PREFERRED,
)

AUTHENTICATION_POLICY = CeremonyPolicy(
    kind=CeremonyKind.AUTHENTICATION,
    user_verification=UserVerificationRequirement.PREFERRED,
    token_scope=TokenScope.NEW_SESSION,
)

STEP_UP_POLICY = CeremonyPolicy(
    kind=CeremonyKind.STEP_UP,
    user_verification=UserVerificationRequirement.REQUIRED,
    token_scope=TokenScope.EXISTING_SESSION_STEP_UP,
)

_POLICIES: Dict[CeremonyKind, CeremonyPolicy] = {
    policy.kind: policy for policy in (REGISTRATION_POLICY, AUTHENTICATION_POLICY, STEP_UP_POLICY)
}


def policy_for(kind: CeremonyKind) -> CeremonyPolicy:
    return _POLICIES[CeremonyKind(kind)]
