"""Wire codec: binary identifiers and buffers to and from transport-safe strings.

Everything leaving the server is standard base64 (with padding). Everything
arriving is accepted in either the standard or the url-safe alphabet, with or
without padding, since browsers and client libraries disagree on which one to
send.
"""
import binascii
import enum
from base64 import b64encode, b64decode
from collections.abc import Mapping

from fido2.utils import websafe_decode, websafe_encode

_TO_URLSAFE = str.maketrans("+/", "-_")
_TO_STANDARD = str.maketrans("-_", "+/")

__all__ = [
    "b64_encode",
    "b64_decode",
    "b64_to_b64url",
    "b64url_to_b64",
    "handle_to_claim",
    "handle_from_claim",
    "to_wire",
]


def b64_encode(data) -> str:
    """Encode bytes (or a str, as UTF-8) to a standard base64 string."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return b64encode(bytes(data)).decode("ascii")


def b64_decode(value: str) -> bytes:
    """Decode a base64 or base64url string, padded or not.

    Raises ValueError on anything that is not valid base64 in either alphabet.
    """
    if not isinstance(value, str):
        raise ValueError("base64 value must be a string")
    candidate = value.strip()
    padded = candidate + "=" * (-len(candidate) % 4)
    try:
        return b64decode(b64url_to_b64(padded), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64: {exc}") from exc


def b64url_to_b64(value: str) -> str:
    """Convert a base64url string to the standard alphabet."""
    return value.translate(_TO_STANDARD)


def b64_to_b64url(value: str) -> str:
    """Convert a standard base64 string to the url-safe alphabet, unpadded."""
    return value.translate(_TO_URLSAFE).rstrip("=")


# User handles travel inside challenge tokens as websafe strings so the JWT
# stays compact and JSON friendly
def handle_to_claim(handle: bytes) -> str:
    return websafe_encode(handle)


def handle_from_claim(claim: str) -> bytes:
    return websafe_decode(claim)


def to_wire(obj):
    """Recursively convert ceremony options into JSON-serializable values."""
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return b64_encode(bytes(obj))
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {k: to_wire(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_wire(v) for v in obj]
    return obj
