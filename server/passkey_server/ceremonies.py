"""Ceremony orchestrator driving registration, authentication and step-up.

All three ceremony kinds share one state machine::

    IDLE -> CHALLENGE_ISSUED -> VERIFICATION_REQUESTED -> VERIFIED | FAILED | EXPIRED

``begin`` moves a ceremony into ``CHALLENGE_ISSUED`` by storing a challenge
under a fresh ceremony identifier. ``finish`` consumes that challenge before
anything else happens, so a second ``finish`` for the same identifier always
fails with :class:`~passkey_server.errors.ChallengeMissing`. What differs
between the kinds is captured by their :class:`~passkey_server.policy.CeremonyPolicy`.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from fido2.webauthn import (
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRequestOptions,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    UserVerificationRequirement,
)

from .challenges import ChallengeStore
from .encoding import convert_bytes_for_json
from .errors import (
    AssertionVerificationError,
    AttestationError,
    CeremonyError,
    CeremonyState,
    ChallengeMissing,
    NoCredentials,
    NotAuthenticated,
    UnknownCredential,
    UnknownUser,
    UsernameTaken,
    ValidationError,
)
from .models import Challenge, Credential, SessionToken, User, fingerprint
from .policy import CeremonyKind, CeremonyPolicy, TokenScope, policy_for
from .registry import CredentialRegistry
from .sessions import SessionManager
from .verifier import (
    AuthenticationVerification,
    CeremonyVerifier,
    RegistrationVerification,
    RelyingParty,
    create_fido_server,
    extract_credential_id,
)

__all__ = [
    "CeremonyOptions",
    "CeremonyOrchestrator",
    "CeremonyOutcome",
]

logger = logging.getLogger(__name__)

PublicKeyOptions = Union[PublicKeyCredentialCreationOptions, PublicKeyCredentialRequestOptions]


@dataclass(frozen=True)
class CeremonyOptions:
    """Parameters handed to the client for the external signing step."""

    kind: CeremonyKind
    ceremony_id: str
    challenge: bytes = field(repr=False)
    rp_id: str
    user_verification: UserVerificationRequirement
    allow_credentials: Tuple[bytes, ...]
    public_key: PublicKeyOptions = field(repr=False)
    expires_in: float = 0.0
    state: CeremonyState = CeremonyState.CHALLENGE_ISSUED

    def to_dict(self) -> Dict[str, Any]:
        return {"publicKey": convert_bytes_for_json(dict(self.public_key))}


@dataclass(frozen=True)
class CeremonyOutcome:
    kind: CeremonyKind
    user: User
    state: CeremonyState = CeremonyState.VERIFIED
    session: Optional[SessionToken] = field(default=None, repr=False)
    approved: bool = False

    @property
    def session_token(self) -> Optional[str]:
        return self.session.token if self.session is not None else None


def _require_username(identity_hint: Any) -> str:
    if not isinstance(identity_hint, str) or not identity_hint.strip():
        raise ValidationError("username is required")
    return identity_hint


def _descriptor(credential: Credential) -> PublicKeyCredentialDescriptor:
    return PublicKeyCredentialDescriptor(
        type=PublicKeyCredentialType.PUBLIC_KEY,
        id=credential.credential_id,
        transports=sorted(credential.transports) or None,
    )


class CeremonyOrchestrator:
    def __init__(
        self,
        challenges: ChallengeStore,
        registry: CredentialRegistry,
        sessions: SessionManager,
        verifier: CeremonyVerifier,
        rp: RelyingParty,
    ) -> None:
        self.challenges = challenges
        self.registry = registry
        self.sessions = sessions
        self.verifier = verifier
        self.rp = rp

    # ------------------------------------------------------------------
    # Begin
    # ------------------------------------------------------------------

    def begin(self, kind: CeremonyKind, identity_hint: Any, *, rp: Optional[RelyingParty] = None) -> CeremonyOptions:
        """Validate ``identity_hint`` for ``kind`` and issue a fresh challenge.

        ``identity_hint`` is a username for registration and authentication
        and a session token for step-up.
        """

        policy = policy_for(kind)
        rp = rp or self.rp

        if policy.requires_session:
            user = self._session_user(identity_hint)
            self._require_credentials(user)
            step_up = self.sessions.issue_step_up(identity_hint)
            ceremony_id = step_up.token
            challenge = self.challenges.issue(ceremony_id)
        elif policy.creates_user:
            username = _require_username(identity_hint)
            if self.registry.find_by_username(username) is not None:
                raise UsernameTaken(f"username {username!r} already exists")
            user = None
            ceremony_id = self._new_ceremony_id()
            challenge = self.challenges.issue(ceremony_id, username)
        else:
            username = _require_username(identity_hint)
            user = self.registry.find_by_username(username)
            if user is None:
                raise UnknownUser(f"no user named {username!r}")
            self._require_credentials(user)
            ceremony_id = self._new_ceremony_id()
            challenge = self.challenges.issue(ceremony_id, username)

        public_key = self._build_public_key_options(policy, challenge, rp, user)
        self._transition(policy.kind, ceremony_id, CeremonyState.CHALLENGE_ISSUED)
        return CeremonyOptions(
            kind=policy.kind,
            ceremony_id=ceremony_id,
            challenge=challenge.value,
            rp_id=rp.id,
            user_verification=policy.user_verification,
            allow_credentials=user.credential_ids if user is not None else (),
            public_key=public_key,
            expires_in=challenge.ttl,
        )

    @staticmethod
    def _new_ceremony_id() -> str:
        return f"session_{secrets.token_urlsafe(24)}"

    def _session_user(self, session_token: Any) -> User:
        if not isinstance(session_token, str) or not session_token:
            raise NotAuthenticated("no session token supplied")
        user = self.registry.find_by_id(self.sessions.validate_session(session_token))
        if user is None:
            raise NotAuthenticated("session is bound to an unknown user")
        return user

    @staticmethod
    def _require_credentials(user: User) -> None:
        if not user.credentials:
            raise NoCredentials(f"user {user.user_id} has no registered credentials")

    @staticmethod
    def _build_public_key_options(
        policy: CeremonyPolicy,
        challenge: Challenge,
        rp: RelyingParty,
        user: Optional[User],
    ) -> PublicKeyOptions:
        server = create_fido_server(rp, timeout=int(challenge.ttl * 1000), attestation=policy.attestation)
        if policy.creates_user:
            username = challenge.username or ""
            options, _ = server.register_begin(
                PublicKeyCredentialUserEntity(
                    name=username,
                    id=username.encode("utf-8"),
                    display_name=username,
                ),
                [],
                resident_key_requirement=policy.resident_key,
                user_verification=policy.user_verification,
                authenticator_attachment=policy.authenticator_attachment,
                challenge=challenge.value,
            )
        else:
            options, _ = server.authenticate_begin(
                [_descriptor(credential) for credential in user.credentials],
                user_verification=policy.user_verification,
                challenge=challenge.value,
            )
        return options.public_key

    # ------------------------------------------------------------------
    # Finish
    # ------------------------------------------------------------------

    def finish(
        self,
        kind: CeremonyKind,
        ceremony_id: Optional[str],
        response: Any,
        *,
        session_token: Optional[str] = None,
        rp: Optional[RelyingParty] = None,
    ) -> CeremonyOutcome:
        """Consume the challenge for ``ceremony_id`` and verify ``response``.

        Any :class:`CeremonyError` escapes with its ``state`` set to the
        terminal state the ceremony ended in; no token is issued unless every
        step, including the counter check, succeeded.
        """

        policy = policy_for(kind)
        rp = rp or self.rp

        try:
            if not ceremony_id:
                raise ChallengeMissing("no ceremony identifier supplied")
            challenge = self.challenges.consume(ceremony_id)
            self._transition(policy.kind, ceremony_id, CeremonyState.VERIFICATION_REQUESTED)

            if policy.creates_user:
                user = self._register(policy, challenge, response, rp)
                outcome = self._grant(policy, user, ceremony_id, session_token)
            else:
                user = self._resolve_user(policy, challenge, session_token)
                if policy.requires_session:
                    # Nothing is verified against a step-up minted for another session.
                    self._check_step_up(user, ceremony_id, session_token)
                stored, verification = self._assert(policy, user, challenge, response, rp)
                outcome = self._grant(policy, user, ceremony_id, session_token, stored, verification)
        except CeremonyError as exc:
            self._transition(policy.kind, ceremony_id, exc.state)
            logger.warning(
                "%s ceremony %s failed with %s: %s",
                policy.kind.value,
                fingerprint(ceremony_id or "-"),
                exc.code,
                exc,
                exc_info=True,
            )
            raise

        self._transition(policy.kind, ceremony_id, CeremonyState.VERIFIED)
        return outcome

    def _resolve_user(self, policy: CeremonyPolicy, challenge: Challenge, session_token: Optional[str]) -> User:
        if policy.requires_session:
            return self._session_user(session_token)
        if not challenge.username:
            raise ChallengeMissing("challenge is not bound to a username")
        user = self.registry.find_by_username(challenge.username)
        if user is None:
            raise UnknownUser(f"no user named {challenge.username!r}")
        return user

    def _register(self, policy: CeremonyPolicy, challenge: Challenge, response: Any, rp: RelyingParty) -> User:
        if not challenge.username:
            raise ChallengeMissing("challenge is not bound to a username")

        try:
            verification: RegistrationVerification = self.verifier.verify_registration(
                response,
                challenge.value,
                rp.origin,
                rp.id,
                user_verification=policy.user_verification,
            )
        except CeremonyError:
            raise
        except Exception as exc:
            logger.exception("Registration verifier raised unexpectedly")
            raise AttestationError(f"verifier raised {type(exc).__name__}: {exc}") from exc

        credential = Credential(
            credential_id=verification.credential_id,
            public_key=verification.public_key,
            sign_count=verification.counter,
            device_backed=verification.device_backed,
            transports=verification.transports,
        )
        return self.registry.enroll(challenge.username, credential)

    def _assert(
        self,
        policy: CeremonyPolicy,
        user: User,
        challenge: Challenge,
        response: Any,
        rp: RelyingParty,
    ) -> Tuple[Credential, AuthenticationVerification]:
        """Verify the assertion without touching stored state."""

        credential_id = extract_credential_id(response)
        stored = user.credential(credential_id)
        if stored is None:
            raise UnknownCredential(
                f"user {user.user_id} owns no credential {fingerprint(credential_id)}"
            )

        try:
            verification: AuthenticationVerification = self.verifier.verify_authentication(
                response,
                challenge.value,
                rp.origin,
                rp.id,
                stored,
                user_verification=policy.user_verification,
            )
        except CeremonyError:
            raise
        except Exception as exc:
            logger.exception("Authentication verifier raised unexpectedly")
            raise AssertionVerificationError(f"verifier raised {type(exc).__name__}: {exc}") from exc

        if verification.credential_id != stored.credential_id:
            raise AssertionVerificationError("verifier matched a different credential")
        if policy.user_verification == UserVerificationRequirement.REQUIRED and not verification.user_verified:
            raise AssertionVerificationError("user verification was required but not performed")
        return stored, verification

    def _check_step_up(self, user: User, step_up_id: str, session_token: Optional[str]) -> None:
        if self.sessions.check_step_up(step_up_id, session_token) != user.user_id:
            raise NotAuthenticated("step-up was issued for a different user")

    def _grant(
        self,
        policy: CeremonyPolicy,
        user: User,
        ceremony_id: str,
        session_token: Optional[str],
        stored: Optional[Credential] = None,
        verification: Optional[AuthenticationVerification] = None,
    ) -> CeremonyOutcome:
        if policy.token_scope == TokenScope.EXISTING_SESSION_STEP_UP:
            # Consumed before the counter moves; its challenge is already spent.
            if self.sessions.consume_step_up(ceremony_id, session_token) != user.user_id:
                raise NotAuthenticated("step-up was issued for a different user")

        if verification is not None:
            # A valid signature does not override replay detection.
            self.registry.update_counter(user.user_id, stored.credential_id, verification.new_counter)

        if policy.token_scope == TokenScope.NEW_SESSION:
            session = self.sessions.issue_session(user.user_id)
            return CeremonyOutcome(kind=policy.kind, user=user, session=session)

        logger.info("Step-up approved for user %s", user.user_id)
        return CeremonyOutcome(kind=policy.kind, user=user, approved=True)

    @staticmethod
    def _transition(kind: CeremonyKind, ceremony_id: Optional[str], state: CeremonyState) -> None:
        logger.debug("%s ceremony %s -> %s", kind.value, fingerprint(ceremony_id or "-"), state.value)

    # ------------------------------------------------------------------
    # Endpoint conveniences
    # ------------------------------------------------------------------

    def begin_registration(self, username: str, **kwargs: Any) -> CeremonyOptions:
        return self.begin(CeremonyKind.REGISTRATION, username, **kwargs)

    def finish_registration(self, session_id: Optional[str], response: Any, **kwargs: Any) -> CeremonyOutcome:
        return self.finish(CeremonyKind.REGISTRATION, session_id, response, **kwargs)

    def begin_authentication(self, username: str, **kwargs: Any) -> CeremonyOptions:
        return self.begin(CeremonyKind.AUTHENTICATION, username, **kwargs)

    def finish_authentication(self, session_id: Optional[str], response: Any, **kwargs: Any) -> CeremonyOutcome:
        return self.finish(CeremonyKind.AUTHENTICATION, session_id, response, **kwargs)

    def begin_step_up(self, session_token: Optional[str], **kwargs: Any) -> CeremonyOptions:
        return self.begin(CeremonyKind.STEP_UP, session_token, **kwargs)

    def finish_step_up(
        self,
        session_token: Optional[str],
        step_up_id: Optional[str],
        response: Any,
        **kwargs: Any,
    ) -> CeremonyOutcome:
        return self.finish(CeremonyKind.STEP_UP, step_up_id, response, session_token=session_token, **kwargs)

    def current_user(self, session_token: Optional[str]) -> User:
        return self._session_user(session_token)

    def logout(self, session_token: Optional[str]) -> None:
        self.sessions.revoke_session(session_token)
