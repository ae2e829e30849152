"""In-memory credential registry.

The registry is the only shared mutable state of the server. Two locks are in
play:

* the registry lock guards the username map and global credential-ID
  uniqueness, so reservation is a single test-and-set;
* each ``UserRecord.lock`` guards that user's credential list and counters.

Lock order is always registry lock first, then user lock. Nothing slow (such as
signature verification) runs while either is held. Writes that act on a record
fetched earlier first check the name still maps to that same record, so a
purge or a reclaimed reservation in between is never written through.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .models import Credential, UserRecord

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    pass


class UsernameTaken(RegistryError):
    def __init__(self, user_name: str):
        super().__init__(f"Username in use: {user_name}")
        self.user_name = user_name


class UserNotFound(RegistryError):
    def __init__(self, user_name: str):
        super().__init__(f"Unknown username: {user_name}")
        self.user_name = user_name


class DuplicateCredential(RegistryError):
    pass


class CredentialRegistry:
    def __init__(self):
        self._lock = threading.Lock()
        self._users: Dict[str, UserRecord] = {}

    def __len__(self):
        with self._lock:
            return len(self._users)

    def __contains__(self, user_name: str) -> bool:
        with self._lock:
            return user_name in self._users

    def reserve_username(
        self,
        user_name: str,
        display_name: str,
        *,
        user_handle: Optional[bytes] = None,
        stale_after: Optional[float] = None,
    ) -> UserRecord:
        """Atomically claim ``user_name``; first registrant wins.

        A reservation that never finished and is older than ``stale_after``
        seconds is reclaimed, since its challenge token has expired anyway.
        """
        with self._lock:
            existing = self._users.get(user_name)
            if existing is not None:
                if not self._is_stale(existing, stale_after):
                    raise UsernameTaken(user_name)
                logger.info(f"Reclaiming stale reservation: {user_name}")
            record = UserRecord(user_name=user_name, display_name=display_name, user_handle=user_handle)
            self._users[user_name] = record
            return record

    def is_reservable(self, user_name: str, *, stale_after: Optional[float] = None) -> bool:
        """Advisory only; ``reserve_username`` stays the real gate."""
        with self._lock:
            existing = self._users.get(user_name)
            return existing is None or self._is_stale(existing, stale_after)

    @staticmethod
    def _is_stale(record: UserRecord, stale_after: Optional[float]) -> bool:
        if stale_after is None or record.is_finalized:
            return False
        return time.monotonic() - record.reserved_at > stale_after

    def fetch(self, user_name: str) -> UserRecord:
        with self._lock:
            try:
                return self._users[user_name]
            except KeyError:
                raise UserNotFound(user_name) from None

    def add_credential(
        self,
        user_name: str,
        credential: Credential,
        *,
        user_handle: Optional[bytes] = None,
        record: Optional[UserRecord] = None,
    ) -> UserRecord:
        """Append ``credential`` to the user, binding ``user_handle`` if given.

        Credential IDs are unique across the whole registry. When ``record``
        is given it must still be the one registered under ``user_name``.
        """
        with self._lock:
            current = self._users.get(user_name)
            if current is None or (record is not None and current is not record):
                raise UserNotFound(user_name)
            record = current
            for other in self._users.values():
                if other.find_credential(credential.credential_id) is not None:
                    raise DuplicateCredential(f"Credential already registered to {other.user_name}")
            with record.lock:
                if user_handle is not None:
                    record.user_handle = user_handle
                record.credentials.append(credential)
            return record

    def find_credential_by_user(self, user_name: str, credential_id: bytes) -> Optional[Credential]:
        record = self.fetch(user_name)
        with record.lock:
            return record.find_credential(credential_id)

    def find_credential_global(self, credential_id: bytes) -> Optional[Tuple[UserRecord, Credential]]:
        # Linear over every credential of every user; fine for a single small RP
        with self._lock:
            for record in self._users.values():
                credential = record.find_credential(credential_id)
                if credential is not None:
                    return record, credential
        return None

    def update_counter(
        self,
        record: UserRecord,
        credential: Credential,
        counter: int,
        check: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        """Store a verified assertion's counter.

        ``check(stored, asserted)`` runs under both locks right before the
        write, so the compare and the store are one step. Raises UserNotFound
        if the record was purged or replaced, or no longer holds the credential.
        """
        with self._lock:
            if self._users.get(record.user_name) is not record:
                raise UserNotFound(record.user_name)
            with record.lock:
                if record.find_credential(credential.credential_id) is not credential:
                    raise UserNotFound(record.user_name)
                if check is not None:
                    check(credential.sign_count, counter)
                credential.sign_count = counter

    def release_reservation(self, user_name: str, record: Optional[UserRecord] = None) -> bool:
        """Delete a reservation that never got a credential.

        Finalized users are left alone. When ``record`` is given, only that
        exact reservation is released, not a newer one under the same name.
        """
        with self._lock:
            current = self._users.get(user_name)
            if current is None or current.is_finalized:
                return False
            if record is not None and current is not record:
                return False
            del self._users[user_name]
            return True

    def delete(self, user_name: str) -> bool:
        with self._lock:
            return self._users.pop(user_name, None) is not None
