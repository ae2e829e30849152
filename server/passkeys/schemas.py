"""Strictly validated request structures, one per route.

Each ``from_json`` takes the decoded JSON object and raises ``InputError``
(400/413) on any missing or mistyped field.
"""
from dataclasses import dataclass
from typing import Optional

from common.input_validation import (
    InputError,
    optional_b64,
    optional_str,
    require_b64,
    require_mapping,
    require_str,
)
from .engine import AssertionPayload, AttestationPayload

MAX_NAME_LEN = 254
MAX_TOKEN_LEN = 4096
MAX_CREDENTIAL_ID = 1023  # WebAuthn caps credential IDs at 1023 bytes
MAX_CLIENT_DATA = 8192
MAX_ATTESTATION_OBJECT = 64 * 1024
MAX_AUTHENTICATOR_DATA = 8192
MAX_SIGNATURE = 4096
MAX_USER_HANDLE = 64


def _credential_id(result: dict) -> bytes:
    # rawId wins; id (base64url of the same bytes) is a fallback and must agree
    if result.get("rawId") is None:
        return require_b64(result, "id", max_decoded=MAX_CREDENTIAL_ID)
    raw_id = require_b64(result, "rawId", max_decoded=MAX_CREDENTIAL_ID)
    if result.get("id") is not None and require_b64(result, "id", max_decoded=MAX_CREDENTIAL_ID) != raw_id:
        raise InputError("id and rawId do not match", 400)
    return raw_id


def _token(data: dict) -> str:
    return require_str(data, "token", max_len=MAX_TOKEN_LEN)


@dataclass(frozen=True)
class RegistrationStartRequest:
    display_name: str
    user_name: str

    @classmethod
    def from_json(cls, data: dict) -> "RegistrationStartRequest":
        return cls(
            display_name=require_str(data, "displayName", max_len=MAX_NAME_LEN, allow_empty=True),
            user_name=require_str(data, "userName", max_len=MAX_NAME_LEN),
        )


@dataclass(frozen=True)
class RegistrationFinishRequest:
    token: str
    result: AttestationPayload

    @classmethod
    def from_json(cls, data: dict) -> "RegistrationFinishRequest":
        token = _token(data)
        result = require_mapping(data, "result")
        response = require_mapping(result, "response")
        return cls(
            token=token,
            result=AttestationPayload(
                credential_id=_credential_id(result),
                client_data_json=require_b64(response, "clientDataJSON", max_decoded=MAX_CLIENT_DATA),
                attestation_object=require_b64(response, "attestationObject", max_decoded=MAX_ATTESTATION_OBJECT),
            ),
        )


@dataclass(frozen=True)
class LoginStartRequest:
    user_name: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict) -> "LoginStartRequest":
        # Absent or empty userName means a discoverable-credential login
        return cls(user_name=optional_str(data, "userName", max_len=MAX_NAME_LEN))


@dataclass(frozen=True)
class LoginFinishRequest:
    token: str
    result: AssertionPayload

    @classmethod
    def from_json(cls, data: dict) -> "LoginFinishRequest":
        token = _token(data)
        result = require_mapping(data, "result")
        response = require_mapping(result, "response")
        return cls(
            token=token,
            result=AssertionPayload(
                credential_id=_credential_id(result),
                client_data_json=require_b64(response, "clientDataJSON", max_decoded=MAX_CLIENT_DATA),
                authenticator_data=require_b64(response, "authenticatorData", max_decoded=MAX_AUTHENTICATOR_DATA),
                signature=require_b64(response, "signature", max_decoded=MAX_SIGNATURE),
                user_handle=optional_b64(response, "userHandle", max_decoded=MAX_USER_HANDLE),
            ),
        )


@dataclass(frozen=True)
class PurgeUserRequest:
    user_name: str

    @classmethod
    def from_json(cls, data) -> "PurgeUserRequest":
        if not isinstance(data, dict):
            raise InputError("JSON body must be an object", 400)
        return cls(user_name=require_str(data, "userName", max_len=MAX_NAME_LEN))
