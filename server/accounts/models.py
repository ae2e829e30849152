import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from fido2.webauthn import AttestedCredentialData
import cbor2

NULL_AAGUID = b"\x00" * 16


@dataclass(eq=False)
class Credential:
    """A registered FIDO2 credential. Only sign_count changes after creation."""

    credential_id: bytes
    public_key: bytes  # COSE key, CBOR-encoded
    sign_count: int = 0
    aaguid: bytes = NULL_AAGUID
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get_credential_data(self) -> AttestedCredentialData:
        """
        Return a proper AttestedCredentialData object using the create() factory
        With attestation="none" the aaguid is ignored by the lib, but keep what the authenticator reported
        """
        return AttestedCredentialData.create(
            self.aaguid,
            self.credential_id,
            cbor2.loads(self.public_key),
        )


@dataclass(eq=False)
class UserRecord:
    user_name: str
    display_name: str
    user_handle: Optional[bytes] = None
    credentials: List[Credential] = field(default_factory=list)
    reserved_at: float = field(default_factory=time.monotonic)

    # Guards credentials and every sign_count in it
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @property
    def is_finalized(self) -> bool:
        # A reservation becomes a real account once its first credential lands
        return bool(self.credentials)

    def find_credential(self, credential_id: bytes) -> Optional[Credential]:
        for credential in self.credentials:
            if credential.credential_id == credential_id:
                return credential
        return None

    def __str__(self):
        state = "active" if self.is_finalized else "reserved"
        return f"{self.user_name} ({state}, {len(self.credentials)} credential(s))"
