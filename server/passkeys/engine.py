"""Adapter around python-fido2's ``Fido2Server``.

The flows treat this as a black box: it builds ceremony options, checks
attestations and assertions against a challenge/origin/RP ID, and owns
signature-counter monotonicity. Every rejection is a ``VerificationError``
whose message is for server logs only.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from fido2.server import Fido2Server
from fido2.webauthn import (
    AttestationObject,
    AuthenticatorAttachment,
    AuthenticatorData,
    CollectedClientData,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)
import cbor2

from accounts.models import Credential
from .codec import to_wire
from .errors import VerificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedCredential:
    credential_id: bytes
    public_key: bytes  # CBOR-encoded COSE key
    sign_count: int
    aaguid: bytes


@dataclass(frozen=True)
class AttestationPayload:
    credential_id: bytes
    client_data_json: bytes
    attestation_object: bytes


@dataclass(frozen=True)
class AssertionPayload:
    credential_id: bytes
    client_data_json: bytes
    authenticator_data: bytes
    signature: bytes
    user_handle: Optional[bytes] = None


class CeremonyVerifier:
    def __init__(
        self,
        rp_id: str,
        rp_name: str,
        origin: str,
        *,
        user_verification: Optional[str] = "preferred",
        authenticator_attachment: Optional[str] = None,
        resident_key: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.rp = PublicKeyCredentialRpEntity(id=rp_id, name=rp_name)
        self.origin = origin
        self.user_verification = UserVerificationRequirement(user_verification) if user_verification else None
        self.authenticator_attachment = AuthenticatorAttachment(authenticator_attachment) if authenticator_attachment else None
        self.resident_key = ResidentKeyRequirement(resident_key) if resident_key else None
        # "none" = maximum compatibility & privacy
        self._server = Fido2Server(self.rp, attestation="none", verify_origin=self._verify_origin)
        self._server.timeout = timeout_ms

    def _verify_origin(self, origin: str) -> bool:
        return origin == self.origin

    # ----- options -----

    def registration_options(self, user_name: str, display_name: str, user_handle: bytes) -> Tuple[dict, dict]:
        """Return ``(public key options as wire JSON, fido2 state)``."""
        options, state = self._server.register_begin(
            PublicKeyCredentialUserEntity(name=user_name, id=user_handle, display_name=display_name),
            credentials=[],
            resident_key_requirement=self.resident_key,
            user_verification=self.user_verification,
            authenticator_attachment=self.authenticator_attachment,
        )
        return to_wire(dict(options.public_key)), _portable_state(state)

    def authentication_options(self, credentials: Iterable[Credential] = ()) -> Tuple[dict, dict]:
        credentials = list(credentials)
        options, state = self._server.authenticate_begin(
            credentials=[c.get_credential_data() for c in credentials] or None,
            user_verification=self.user_verification,
        )
        pk_options = to_wire(dict(options.public_key))
        # Discoverable logins still get an explicit empty allow-list
        pk_options.setdefault("allowCredentials", [])
        return pk_options, _portable_state(state)

    # ----- verification -----

    def verify_attestation(self, state: dict, payload: AttestationPayload) -> VerifiedCredential:
        try:
            client_data = CollectedClientData(payload.client_data_json)
            att_obj = AttestationObject(payload.attestation_object)
            auth_data = self._server.register_complete(state, client_data, att_obj)
        except Exception as e:
            raise VerificationError(f"{type(e).__name__}: {e}") from e

        credential_data = auth_data.credential_data
        if credential_data is None:
            raise VerificationError("Attestation carries no credential data")
        if credential_data.credential_id != payload.credential_id:
            raise VerificationError("rawId does not match attested credential ID")
        return VerifiedCredential(
            credential_id=credential_data.credential_id,
            public_key=cbor2.dumps(dict(credential_data.public_key)),  # COSE key dict to CBOR bytes
            sign_count=auth_data.counter,
            aaguid=bytes(credential_data.aaguid),
        )

    def verify_assertion(self, state: dict, credential: Credential, user_handle: Optional[bytes], payload: AssertionPayload) -> int:
        """Verify an assertion's signature and bindings; return its counter.

        The counter is not compared here. Callers pass ``check_counter`` to
        the registry so the comparison happens atomically with the write.
        """
        if payload.user_handle is not None and payload.user_handle != user_handle:
            raise VerificationError("userHandle does not match the credential owner")
        try:
            client_data = CollectedClientData(payload.client_data_json)
            auth_data = AuthenticatorData(payload.authenticator_data)
            self._server.authenticate_complete(
                state,
                [credential.get_credential_data()],
                payload.credential_id,
                client_data,
                auth_data,
                payload.signature,
            )
        except Exception as e:
            raise VerificationError(f"{type(e).__name__}: {e}") from e

        if auth_data.counter == 0:
            logger.info(f"Software authenticator (no counter) used for credential {payload.credential_id.hex()}")
        return auth_data.counter

    @staticmethod
    def check_counter(previous_counter: int, current_counter: int) -> None:
        """Sign count check for clone detection.

        The counter must strictly increase, unless both the stored and the
        asserted counter are 0 (authenticator without counter support).
        """
        if (current_counter or previous_counter) and current_counter <= previous_counter:
            raise VerificationError(
                f"Possible cloned authenticator detected (counter {current_counter} <= {previous_counter})"
            )


def _portable_state(state: dict) -> dict:
    # fido2 state holds an enum; tokens need plain JSON values
    uv = state.get("user_verification")
    return {
        "challenge": state["challenge"],
        "user_verification": getattr(uv, "value", uv),
    }
