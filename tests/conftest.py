import os
from hashlib import sha256

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2.cose import ES256
from fido2.webauthn import (
    AttestationObject,
    AttestedCredentialData,
    AuthenticatorData,
    CollectedClientData,
)

from passkeys.codec import b64_decode, b64_encode, b64_to_b64url
from passkeys.service import RelyingParty

RP_ID = "example.com"
ORIGIN = "https://example.com"


class SoftAuthenticator:
    """Software authenticator producing real ES256 attestations and assertions.

    Outputs are shaped like the JSON a browser client posts to the finish
    routes (base64 fields inside ``result``).
    """

    def __init__(self, rp_id=RP_ID, origin=ORIGIN, credential_id=None):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = credential_id or os.urandom(32)
        self.rp_id_hash = sha256(rp_id.encode()).digest()
        self.origin = origin
        self.counter = 0
        self.user_handle = None

    def make_credential(self, options, *, origin=None, challenge=None):
        if challenge is None:
            challenge = b64_decode(options["challenge"])
        self.user_handle = b64_decode(options["user"]["id"])
        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.CREATE,
            challenge,
            origin or self.origin,
        )
        attested = AttestedCredentialData.create(
            bytes(16),
            self.credential_id,
            ES256.from_cryptography_key(self.private_key.public_key()),
        )
        auth_data = AuthenticatorData.create(
            self.rp_id_hash,
            AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.UV | AuthenticatorData.FLAG.AT,
            counter=self.counter,
            credential_data=attested,
        )
        attestation_object = AttestationObject.create("none", auth_data, {})
        return {
            "id": b64_to_b64url(b64_encode(self.credential_id)),
            "rawId": b64_encode(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": b64_encode(bytes(client_data)),
                "attestationObject": b64_encode(bytes(attestation_object)),
            },
        }

    def get_assertion(self, options, *, counter=None, origin=None, user_handle=True):
        """Sign the challenge; bumps the internal counter unless one is given."""
        if counter is None:
            self.counter += 1
            counter = self.counter
        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.GET,
            b64_decode(options["challenge"]),
            origin or self.origin,
        )
        auth_data = AuthenticatorData.create(
            self.rp_id_hash,
            AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.UV,
            counter=counter,
        )
        signature = self.private_key.sign(bytes(auth_data) + client_data.hash, ec.ECDSA(hashes.SHA256()))
        response = {
            "clientDataJSON": b64_encode(bytes(client_data)),
            "authenticatorData": b64_encode(bytes(auth_data)),
            "signature": b64_encode(signature),
        }
        if user_handle is True and self.user_handle is not None:
            response["userHandle"] = b64_encode(self.user_handle)
        elif isinstance(user_handle, bytes):
            response["userHandle"] = b64_encode(user_handle)
        return {
            "id": b64_to_b64url(b64_encode(self.credential_id)),
            "rawId": b64_encode(self.credential_id),
            "type": "public-key",
            "response": response,
        }


@pytest.fixture
def relying_party():
    rp = RelyingParty(rp_id=RP_ID, rp_name="Example RP", origin=ORIGIN, token_ttl=300, ready_timeout=5)
    rp.start().require_ready()
    return rp


@pytest.fixture
def authenticator():
    return SoftAuthenticator()


@pytest.fixture
def register(relying_party):
    """Run a full registration through the flows and return the credential ID."""
    from passkeys.schemas import RegistrationFinishRequest

    def _register(authenticator, user_name="alice@example.com", display_name="Alice"):
        started = relying_party.registration.start(display_name, user_name)
        assert started.ok, started
        result = authenticator.make_credential(started.value.options)
        request = RegistrationFinishRequest.from_json({"token": started.value.token, "result": result})
        finished = relying_party.registration.finish(request.token, request.result)
        assert finished.ok, finished
        return authenticator.credential_id

    return _register
