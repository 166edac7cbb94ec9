from typing import Any, Dict, Iterable, Optional

import pytest
from fido2.utils import websafe_decode, websafe_encode

from passkey_server.ceremonies import CeremonyOptions, CeremonyOrchestrator
from passkey_server.challenges import InMemoryChallengeStore
from passkey_server.errors import AssertionVerificationError, AttestationError
from passkey_server.registry import InMemoryCredentialRegistry
from passkey_server.sessions import InMemorySessionManager
from passkey_server.verifier import (
    AuthenticationVerification,
    CeremonyVerifier,
    RegistrationVerification,
    RelyingParty,
    extract_credential_id,
)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVerifier(CeremonyVerifier):
    """Accepts any response that echoes the expected challenge.

    Responses are plain dicts produced by the ``sign_registration`` and
    ``sign_assertion`` fixtures; no signature math is involved.
    """

    def __init__(self) -> None:
        self.calls = []

    @staticmethod
    def _challenge_matches(response: Dict[str, Any], expected: bytes) -> bool:
        return websafe_decode(response.get("challenge", "")) == expected

    def verify_registration(self, response, expected_challenge, expected_origin, expected_rp_id, *, user_verification=None):
        self.calls.append(("registration", expected_origin, expected_rp_id, user_verification))
        if not self._challenge_matches(response, expected_challenge):
            raise AttestationError("Wrong challenge in response.")
        return RegistrationVerification(
            credential_id=extract_credential_id(response),
            public_key=b"cose-public-key",
            counter=response.get("counter", 0),
            device_backed=response.get("deviceBacked", False),
            transports=frozenset(response.get("transports", ())),
        )

    def verify_authentication(
        self,
        response,
        expected_challenge,
        expected_origin,
        expected_rp_id,
        stored_credential,
        *,
        user_verification=None,
    ):
        self.calls.append(("authentication", expected_origin, expected_rp_id, user_verification))
        if not self._challenge_matches(response, expected_challenge):
            raise AssertionVerificationError("Wrong challenge in response.")
        if response.get("invalidSignature"):
            raise AssertionVerificationError("Invalid signature.")
        return AuthenticationVerification(
            credential_id=stored_credential.credential_id,
            new_counter=response["counter"],
            user_verified=response.get("userVerified", True),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def challenges(clock):
    return InMemoryChallengeStore(clock=clock)


@pytest.fixture
def registry():
    return InMemoryCredentialRegistry()


@pytest.fixture
def sessions(clock):
    return InMemorySessionManager(clock=clock)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def rp():
    return RelyingParty(id="localhost", name="Passkey Login Demo", origin="http://localhost:3000")


@pytest.fixture
def orchestrator(challenges, registry, sessions, verifier, rp):
    return CeremonyOrchestrator(challenges, registry, sessions, verifier, rp)


@pytest.fixture
def sign_registration():
    def _sign(
        options: CeremonyOptions,
        credential_id: bytes = b"credential-alice",
        counter: int = 0,
        transports: Iterable[str] = ("internal",),
        device_backed: bool = True,
    ) -> Dict[str, Any]:
        return {
            "id": websafe_encode(credential_id),
            "rawId": websafe_encode(credential_id),
            "type": "public-key",
            "challenge": websafe_encode(options.challenge),
            "counter": counter,
            "transports": list(transports),
            "deviceBacked": device_backed,
        }

    return _sign


@pytest.fixture
def sign_assertion():
    def _sign(
        options: CeremonyOptions,
        credential_id: bytes = b"credential-alice",
        counter: int = 1,
        user_verified: bool = True,
        challenge: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        return {
            "id": websafe_encode(credential_id),
            "rawId": websafe_encode(credential_id),
            "type": "public-key",
            "challenge": websafe_encode(challenge if challenge is not None else options.challenge),
            "counter": counter,
            "userVerified": user_verified,
        }

    return _sign
