import pytest
from fido2.webauthn import (
    AuthenticatorAttachment,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from passkey_server.policy import (
    AUTHENTICATION_POLICY,
    REGISTRATION_POLICY,
    STEP_UP_POLICY,
    CeremonyKind,
    CeremonyPolicy,
    TokenScope,
    policy_for,
)


def test_policy_lookup_by_kind_and_value():
    assert policy_for(CeremonyKind.REGISTRATION) is REGISTRATION_POLICY
    assert policy_for("authentication") is AUTHENTICATION_POLICY
    assert policy_for(CeremonyKind.STEP_UP) is STEP_UP_POLICY


def test_policy_flags():
    assert REGISTRATION_POLICY.user_verification == UserVerificationRequirement.PREFERRED
    assert REGISTRATION_POLICY.authenticator_attachment == AuthenticatorAttachment.PLATFORM
    assert REGISTRATION_POLICY.resident_key == ResidentKeyRequirement.PREFERRED
    assert REGISTRATION_POLICY.creates_user

    assert AUTHENTICATION_POLICY.user_verification == UserVerificationRequirement.PREFERRED
    assert AUTHENTICATION_POLICY.token_scope == TokenScope.NEW_SESSION
    assert not AUTHENTICATION_POLICY.creates_user

    assert STEP_UP_POLICY.user_verification == UserVerificationRequirement.REQUIRED
    assert STEP_UP_POLICY.token_scope == TokenScope.EXISTING_SESSION_STEP_UP
    assert STEP_UP_POLICY.requires_session


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        policy_for("password")


@pytest.mark.parametrize(
    "kwargs",
    [
        {
            "kind": CeremonyKind.STEP_UP,
            "user_verification": UserVerificationRequirement.PREFERRED,
            "token_scope": TokenScope.EXISTING_SESSION_STEP_UP,
        },
        {
            "kind": CeremonyKind.STEP_UP,
            "user_verification": UserVerificationRequirement.REQUIRED,
            "token_scope": TokenScope.NEW_SESSION,
        },
        {
            "kind": CeremonyKind.AUTHENTICATION,
            "user_verification": UserVerificationRequirement.PREFERRED,
            "token_scope": TokenScope.EXISTING_SESSION_STEP_UP,
        },
        {
            "kind": CeremonyKind.AUTHENTICATION,
            "user_verification": UserVerificationRequirement.DISCOURAGED,
            "token_scope": TokenScope.NEW_SESSION,
        },
        {
            "kind": CeremonyKind.AUTHENTICATION,
            "user_verification": UserVerificationRequirement.PREFERRED,
            "token_scope": TokenScope.NEW_SESSION,
            "authenticator_attachment": AuthenticatorAttachment.PLATFORM,
        },
    ],
)
def test_invalid_policy_combinations_are_rejected(kwargs):
    with pytest.raises(ValueError):
        CeremonyPolicy(**kwargs)
