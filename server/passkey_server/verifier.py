"""Boundary to the WebAuthn signature and attestation checks.

The ceremony orchestrator never inspects signatures itself; it hands the
signed response to a :class:`CeremonyVerifier`. :class:`Fido2Verifier` is the
production implementation backed by :class:`fido2.server.Fido2Server`.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, FrozenSet, Mapping, Optional

from fido2 import cbor
from fido2.cose import CoseKey
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestationConveyancePreference,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorData,
    AuthenticatorTransport,
    PublicKeyCredentialRpEntity,
    RegistrationResponse,
    UserVerificationRequirement,
)

from .errors import AssertionVerificationError, AttestationError, ValidationError
from .models import Credential, parse_transports

__all__ = [
    "AuthenticationVerification",
    "CeremonyVerifier",
    "Fido2Verifier",
    "RegistrationVerification",
    "RelyingParty",
    "create_fido_server",
    "extract_credential_id",
]


@dataclass(frozen=True)
class RelyingParty:
    id: str
    name: str
    origin: str

    @property
    def entity(self) -> PublicKeyCredentialRpEntity:
        return PublicKeyCredentialRpEntity(name=self.name, id=self.id)


@dataclass(frozen=True)
class RegistrationVerification:
    credential_id: bytes
    public_key: bytes
    counter: int
    device_backed: bool
    transports: FrozenSet[AuthenticatorTransport] = frozenset()


@dataclass(frozen=True)
class AuthenticationVerification:
    credential_id: bytes
    new_counter: int
    user_verified: bool = False


def create_fido_server(
    rp: RelyingParty,
    *,
    timeout: Optional[int] = None,
    attestation: AttestationConveyancePreference = AttestationConveyancePreference.NONE,
) -> Fido2Server:
    """Instantiate a :class:`Fido2Server` that only accepts ``rp.origin``."""

    expected_origin = rp.origin

    def _verify_origin(origin: str) -> bool:
        return origin == expected_origin

    server = Fido2Server(
        rp.entity,
        attestation=attestation,
        verify_origin=_verify_origin,
    )
    if timeout is not None:
        server.timeout = timeout
    return server


def extract_credential_id(response: Any) -> bytes:
    """Return the raw credential ID named by a signed client response."""

    if isinstance(response, Mapping):
        raw_value = response.get("rawId") or response.get("id")
    else:
        raw_value = getattr(response, "raw_id", None) or getattr(response, "id", None)

    if isinstance(raw_value, (bytes, bytearray, memoryview)):
        value = bytes(raw_value)
    elif isinstance(raw_value, str) and raw_value.strip():
        try:
            value = websafe_decode(raw_value.strip())
        except ValueError as exc:
            raise ValidationError("credential ID is not valid base64url") from exc
    else:
        raise ValidationError("response does not name a credential")

    if not value:
        raise ValidationError("response does not name a credential")
    return value


class CeremonyVerifier(abc.ABC):
    """Pure, synchronous and authoritative signature / origin / RP checks."""

    @abc.abstractmethod
    def verify_registration(
        self,
        response: Any,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
        *,
        user_verification: UserVerificationRequirement = UserVerificationRequirement.PREFERRED,
    ) -> RegistrationVerification:
        """Raise :class:`AttestationError` unless the attestation is valid."""

    @abc.abstractmethod
    def verify_authentication(
        self,
        response: Any,
        expected_challenge: bytes,
        expected_origin: str,
        expected_rp_id: str,
        stored_credential: Credential,
        *,
        user_verification: UserVerificationRequirement = UserVerificationRequirement.PREFERRED,
    ) -> AuthenticationVerification:
        """Raise :class:`AssertionVerificationError` unless the assertion is valid."""


class Fido2Verifier(CeremonyVerifier):
    def __init__(self, rp_name: str = "Passkey Login Demo") -> None:
        self.rp_name = rp_name

    def _server(self, origin: str, rp_id: str) -> Fido2Server:
        return create_fido_server(RelyingParty(id=rp_id, name=self.rp_name, origin=origin))

    @staticmethod
    def _state(challenge: bytes, user_verification: UserVerificationRequirement) -> dict:
        return {"challenge": websafe_encode(challenge), "user_verification": user_verification}

    def verify_registration(
        self,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        *,
        user_verification=UserVerificationRequirement.PREFERRED,
    ):
        try:
            registration = RegistrationResponse.from_dict(response)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("malformed registration response") from exc

        server = self._server(expected_origin, expected_rp_id)
        try:
            auth_data = server.register_complete(
                self._state(expected_challenge, user_verification), registration
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AttestationError(str(exc)) from exc

        credential_data = auth_data.credential_data
        if credential_data is None:
            raise AttestationError("attestation carries no credential data")

        raw_transports = None
        if isinstance(response, Mapping) and isinstance(response.get("response"), Mapping):
            raw_transports = response["response"].get("transports")
        if not isinstance(raw_transports, (list, tuple)):
            raw_transports = None

        return RegistrationVerification(
            credential_id=bytes(credential_data.credential_id),
            public_key=cbor.encode(dict(credential_data.public_key)),
            counter=auth_data.counter,
            device_backed=bool(auth_data.flags & AuthenticatorData.FLAG.BE),
            transports=parse_transports(raw_transports, strict=False),
        )

    def verify_authentication(
        self,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        stored_credential,
        *,
        user_verification=UserVerificationRequirement.PREFERRED,
    ):
        try:
            authentication = AuthenticationResponse.from_dict(response)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError("malformed authentication response") from exc

        try:
            public_key = CoseKey.parse(cbor.decode(stored_credential.public_key))
        except (KeyError, TypeError, ValueError) as exc:
            raise AssertionVerificationError("stored public key is unusable") from exc

        credential_data = AttestedCredentialData.create(
            bytes(16), stored_credential.credential_id, public_key
        )

        server = self._server(expected_origin, expected_rp_id)
        try:
            server.authenticate_complete(
                self._state(expected_challenge, user_verification),
                [credential_data],
                authentication,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise AssertionVerificationError(str(exc)) from exc

        auth_data = authentication.response.authenticator_data
        return AuthenticationVerification(
            credential_id=stored_credential.credential_id,
            new_counter=auth_data.counter,
            user_verified=auth_data.is_user_verified(),
        )
