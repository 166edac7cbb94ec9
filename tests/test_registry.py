import threading

import pytest
from fido2.webauthn import AuthenticatorTransport

from passkey_server.errors import (
    CredentialIdCollision,
    ReplayDetected,
    UnknownCredential,
    UnknownUser,
    UsernameTaken,
    ValidationError,
)
from passkey_server.models import Credential, parse_transports
from passkey_server.registry import is_counter_advance


def _credential(credential_id: bytes, sign_count: int = 0) -> Credential:
    return Credential(
        credential_id=credential_id,
        public_key=b"public-key-" + credential_id,
        sign_count=sign_count,
        transports=["internal", "hybrid"],
    )


def test_create_user_and_lookup(registry):
    user = registry.create_user("alice")

    assert user.username == "alice"
    assert user.credentials == ()
    assert registry.find_by_username("alice") == user
    assert registry.find_by_id(user.user_id) == user
    assert registry.find_by_username("Alice") is None


def test_create_user_twice_is_rejected(registry):
    registry.create_user("alice")

    with pytest.raises(UsernameTaken):
        registry.create_user("alice")


def test_create_user_requires_username(registry):
    with pytest.raises(ValidationError):
        registry.create_user("   ")


def test_concurrent_create_user_admits_exactly_one(registry):
    barrier = threading.Barrier(10)
    created = []
    rejected = []

    def _register():
        barrier.wait()
        try:
            created.append(registry.create_user("alice"))
        except UsernameTaken:
            rejected.append(True)

    threads = [threading.Thread(target=_register) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(created) == 1
    assert len(rejected) == 9


def test_add_credential_parses_transports(registry):
    user = registry.create_user("alice")

    updated = registry.add_credential(user.user_id, _credential(b"cred-a"))

    assert updated.credential_ids == (b"cred-a",)
    assert updated.credentials[0].transports == frozenset(
        {AuthenticatorTransport.INTERNAL, AuthenticatorTransport.HYBRID}
    )


def test_add_credential_to_unknown_user(registry):
    with pytest.raises(UnknownUser):
        registry.add_credential("user_missing", _credential(b"cred-a"))


def test_cross_user_collision_leaves_both_users_unchanged(registry):
    bob = registry.create_user("bob")
    alice = registry.create_user("alice")
    registry.add_credential(bob.user_id, _credential(b"shared-id"))
    registry.add_credential(alice.user_id, _credential(b"alice-own"))

    with pytest.raises(CredentialIdCollision):
        registry.add_credential(alice.user_id, _credential(b"shared-id"))

    assert registry.find_by_id(bob.user_id).credential_ids == (b"shared-id",)
    assert registry.find_by_id(alice.user_id).credential_ids == (b"alice-own",)


def test_enroll_is_all_or_nothing(registry):
    bob = registry.create_user("bob")
    registry.add_credential(bob.user_id, _credential(b"shared-id"))

    with pytest.raises(CredentialIdCollision):
        registry.enroll("alice", _credential(b"shared-id"))
    assert registry.find_by_username("alice") is None

    with pytest.raises(UsernameTaken):
        registry.enroll("bob", _credential(b"fresh-id"))
    assert registry.find_by_credential_id(b"fresh-id") is None

    alice = registry.enroll("alice", _credential(b"alice-id"))
    assert alice.credential_ids == (b"alice-id",)


def test_find_by_credential_id(registry):
    alice = registry.enroll("alice", _credential(b"alice-id"))

    owner, credential = registry.find_by_credential_id(b"alice-id")
    assert owner.user_id == alice.user_id
    assert credential.credential_id == b"alice-id"
    assert registry.find_by_credential_id(b"unknown") is None


@pytest.mark.parametrize(
    "stored, new, expected",
    [
        (0, 0, True),
        (0, 1, True),
        (5, 6, True),
        (5, 5, False),
        (5, 4, False),
        (5, 0, False),
    ],
)
def test_is_counter_advance(stored, new, expected):
    assert is_counter_advance(stored, new) is expected


def test_update_counter_advances(registry):
    alice = registry.enroll("alice", _credential(b"alice-id"))

    updated = registry.update_counter(alice.user_id, b"alice-id", 1)

    assert updated.sign_count == 1
    assert registry.find_by_id(alice.user_id).credentials[0].sign_count == 1


def test_update_counter_accepts_zero_to_zero(registry):
    alice = registry.enroll("alice", _credential(b"alice-id"))

    assert registry.update_counter(alice.user_id, b"alice-id", 0).sign_count == 0


@pytest.mark.parametrize("new_counter", [7, 3, 0])
def test_update_counter_rejects_non_increasing_values(registry, new_counter):
    alice = registry.enroll("alice", _credential(b"alice-id", sign_count=7))

    with pytest.raises(ReplayDetected):
        registry.update_counter(alice.user_id, b"alice-id", new_counter)

    assert registry.find_by_id(alice.user_id).credentials[0].sign_count == 7


def test_update_counter_for_unknown_credential(registry):
    alice = registry.enroll("alice", _credential(b"alice-id"))

    with pytest.raises(UnknownCredential):
        registry.update_counter(alice.user_id, b"other-id", 3)
    with pytest.raises(UnknownUser):
        registry.update_counter("user_missing", b"alice-id", 3)
    with pytest.raises(ValidationError):
        registry.update_counter(alice.user_id, b"alice-id", -1)


def test_concurrent_counter_updates_with_same_value_succeed_once(registry):
    alice = registry.enroll("alice", _credential(b"alice-id", sign_count=1))
    barrier = threading.Barrier(6)
    accepted = []
    replays = []

    def _authenticate():
        barrier.wait()
        try:
            accepted.append(registry.update_counter(alice.user_id, b"alice-id", 2))
        except ReplayDetected:
            replays.append(True)

    threads = [threading.Thread(target=_authenticate) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(accepted) == 1
    assert len(replays) == 5


def test_credential_rejects_unknown_transport():
    with pytest.raises(ValidationError):
        Credential(credential_id=b"id", public_key=b"key", transports=["carrier-pigeon"])


def test_lenient_transport_parsing_skips_unknown_hints():
    assert parse_transports(["internal", "carrier-pigeon", 7], strict=False) == frozenset(
        {AuthenticatorTransport.INTERNAL}
    )
    assert parse_transports("usb", strict=False) == frozenset()
    with pytest.raises(ValidationError):
        parse_transports(["internal", "carrier-pigeon"])


def test_credential_rejects_negative_counter():
    with pytest.raises(ValidationError):
        Credential(credential_id=b"id", public_key=b"key", sign_count=-1)
