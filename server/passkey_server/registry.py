"""Users and their registered public-key credentials."""
from __future__ import annotations

import abc
import dataclasses
import logging
import secrets
import threading
from typing import Dict, List, Optional, Tuple

from .errors import (
    CredentialIdCollision,
    ReplayDetected,
    UnknownCredential,
    UnknownUser,
    UsernameTaken,
    ValidationError,
)
from .models import Credential, User, fingerprint

__all__ = [
    "CredentialRegistry",
    "InMemoryCredentialRegistry",
    "is_counter_advance",
]

logger = logging.getLogger(__name__)


def is_counter_advance(stored: int, new: int) -> bool:
    """Return ``True`` when ``new`` is an acceptable successor of ``stored``.

    Authenticators without a counter report zero forever, so zero followed by
    zero is accepted. Any other non-increasing value may indicate a cloned
    authenticator.
    """

    if stored == 0 and new == 0:
        return True
    return new > stored


class CredentialRegistry(abc.ABC):
    """Credential IDs are unique across every user, not only within one."""

    @abc.abstractmethod
    def create_user(self, username: str) -> User:
        """Create a user or raise :class:`UsernameTaken`."""

    @abc.abstractmethod
    def add_credential(self, user_id: str, credential: Credential) -> User:
        """Attach ``credential`` or raise :class:`CredentialIdCollision`."""

    @abc.abstractmethod
    def enroll(self, username: str, credential: Credential) -> User:
        """Create ``username`` together with its first credential, atomically.

        Either both records are written or neither is.
        """

    @abc.abstractmethod
    def find_by_username(self, username: str) -> Optional[User]:
        ...

    @abc.abstractmethod
    def find_by_id(self, user_id: str) -> Optional[User]:
        ...

    @abc.abstractmethod
    def find_by_credential_id(self, credential_id: bytes) -> Optional[Tuple[User, Credential]]:
        ...

    @abc.abstractmethod
    def update_counter(self, user_id: str, credential_id: bytes, new_counter: int) -> Credential:
        """Advance the stored signature counter or raise :class:`ReplayDetected`."""


@dataclasses.dataclass
class _UserRecord:
    user_id: str
    username: str
    credentials: List[Credential] = dataclasses.field(default_factory=list)

    def snapshot(self) -> User:
        return User(user_id=self.user_id, username=self.username, credentials=tuple(self.credentials))


class InMemoryCredentialRegistry(CredentialRegistry):
    def __init__(self) -> None:
        self._users: Dict[str, _UserRecord] = {}
        self._user_ids_by_name: Dict[str, str] = {}
        self._owners: Dict[bytes, str] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _check_username(username: str) -> None:
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("username is required")

    @staticmethod
    def _new_user_id() -> str:
        return f"user_{secrets.token_hex(12)}"

    def create_user(self, username: str) -> User:
        self._check_username(username)
        with self._lock:
            if username in self._user_ids_by_name:
                raise UsernameTaken(f"username {username!r} already exists")
            record = _UserRecord(user_id=self._new_user_id(), username=username)
            self._users[record.user_id] = record
            self._user_ids_by_name[username] = record.user_id
            logger.info("Created user %s (%s)", username, record.user_id)
            return record.snapshot()

    def add_credential(self, user_id: str, credential: Credential) -> User:
        with self._lock:
            record = self._users.get(user_id)
            if record is None:
                raise UnknownUser(f"no user with id {user_id!r}")
            self._check_collision(credential)
            record.credentials.append(credential)
            self._owners[credential.credential_id] = user_id
            logger.info(
                "Registered credential %s for user %s",
                fingerprint(credential.credential_id),
                user_id,
            )
            return record.snapshot()

    def enroll(self, username: str, credential: Credential) -> User:
        self._check_username(username)
        with self._lock:
            if username in self._user_ids_by_name:
                raise UsernameTaken(f"username {username!r} already exists")
            self._check_collision(credential)
            user = self.create_user(username)
            return self.add_credential(user.user_id, credential)

    def _check_collision(self, credential: Credential) -> None:
        owner = self._owners.get(credential.credential_id)
        if owner is not None:
            raise CredentialIdCollision(
                f"credential {fingerprint(credential.credential_id)} already belongs to {owner}"
            )

    def find_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            user_id = self._user_ids_by_name.get(username)
            if user_id is None:
                return None
            return self._users[user_id].snapshot()

    def find_by_id(self, user_id: str) -> Optional[User]:
        with self._lock:
            record = self._users.get(user_id)
            return record.snapshot() if record is not None else None

    def find_by_credential_id(self, credential_id: bytes) -> Optional[Tuple[User, Credential]]:
        with self._lock:
            owner = self._owners.get(bytes(credential_id))
            if owner is None:
                return None
            user = self._users[owner].snapshot()
            credential = user.credential(bytes(credential_id))
            if credential is None:
                return None
            return user, credential

    def update_counter(self, user_id: str, credential_id: bytes, new_counter: int) -> Credential:
        if isinstance(new_counter, bool) or not isinstance(new_counter, int) or new_counter < 0:
            raise ValidationError("signature counter must be a non-negative integer")

        with self._lock:
            record = self._users.get(user_id)
            if record is None:
                raise UnknownUser(f"no user with id {user_id!r}")
            for index, stored in enumerate(record.credentials):
                if stored.credential_id == credential_id:
                    break
            else:
                raise UnknownCredential(
                    f"user {user_id} owns no credential {fingerprint(credential_id)}"
                )

            if not is_counter_advance(stored.sign_count, new_counter):
                raise ReplayDetected(
                    f"counter for credential {fingerprint(credential_id)} went from "
                    f"{stored.sign_count} to {new_counter}"
                )

            updated = dataclasses.replace(stored, sign_count=new_counter)
            record.credentials[index] = updated
            return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)
