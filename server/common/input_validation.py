import json

from passkeys.codec import b64_decode

# Small input-validation helpers used by every JSON endpoint
# Goal: fail fast with clear 4xx errors and size limits before touching the registry or the token service
# Keeps validation consistent across the ceremony routes and the admin API
#

# Raised when user input is invalid
# Carries an HTTP-ish status so views can map errors to proper responses
class InputError(Exception):
    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


# Reads request.body as JSON with a hard size cap
# Only accepts JSON objects (dict) since endpoints expect key/value payloads
def parse_json_body(request, max_bytes: int = 200_000) -> dict:
    raw = request.body or b""
    if len(raw) > max_bytes:
        raise InputError("Request body too large", 413)
    if not raw.strip():
        return {}
    try:
        obj = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
    except (UnicodeDecodeError, ValueError):
        raise InputError("Invalid JSON", 400)
    if not isinstance(obj, dict):
        raise InputError("JSON body must be an object", 400)
    return obj


# Normalizes a string input (trim, optional lowercasing)
# Rejects control characters to avoid log injection and weird parsing edge cases
def clean_str(v, *, key: str = "value", strip=True, lower=False) -> str:
    if not isinstance(v, str):
        raise InputError(f"Expected string: {key}", 400)
    if strip:
        v = v.strip()
    if lower:
        v = v.lower()
    if any(ord(c) < 32 for c in v):
        raise InputError(f"Invalid characters in input: {key}", 400)
    return v


# Required string field with length constraints
# allow_empty is for fields like displayName where "" is a legal value
def require_str(data: dict, key: str, *, max_len: int, strip=True, lower=False, allow_empty=False) -> str:
    if key not in data or data[key] is None:
        raise InputError(f"Missing field: {key}", 400)
    v = clean_str(data[key], key=key, strip=strip, lower=lower)
    if len(v) == 0 and not allow_empty:
        raise InputError(f"Empty field: {key}", 400)
    if len(v) > max_len:
        raise InputError(f"Field too long: {key}", 400)
    return v


# Optional string field, missing/null/empty all collapse to None
# Still enforces max length when provided
def optional_str(data: dict, key: str, *, max_len: int, strip=True, lower=False):
    if key not in data or data[key] is None:
        return None
    v = clean_str(data[key], key=key, strip=strip, lower=lower)
    if len(v) == 0:
        return None
    if len(v) > max_len:
        raise InputError(f"Field too long: {key}", 400)
    return v


# Nested JSON object (e.g. the ceremony "result" and its "response")
def require_mapping(data: dict, key: str) -> dict:
    value = data.get(key)
    if value is None:
        raise InputError(f"Missing field: {key}", 400)
    if not isinstance(value, dict):
        raise InputError(f"Expected object: {key}", 400)
    return value


# Base64 decoder with size guards
# Protects against oversized payloads and avoids allocating huge buffers
# Accepts standard and url-safe alphabets, with or without padding
def require_b64(data: dict, key: str, *, max_decoded: int) -> bytes:
    if key not in data or data[key] is None:
        raise InputError(f"Missing field: {key}", 400)
    value = data[key]
    if not isinstance(value, str):
        raise InputError(f"Expected base64 string: {key}", 400)
    if len(value) > (max_decoded * 4 // 3) + 32:
        raise InputError(f"Payload too large: {key}", 413)
    try:
        raw = b64_decode(value)
    except ValueError:
        raise InputError(f"Invalid base64: {key}", 400)
    if not raw:
        raise InputError(f"Empty field: {key}", 400)
    if len(raw) > max_decoded:
        raise InputError(f"Decoded payload too large: {key}", 413)
    return raw


def optional_b64(data: dict, key: str, *, max_decoded: int):
    if data.get(key) in (None, ""):
        return None
    return require_b64(data, key, max_decoded=max_decoded)
