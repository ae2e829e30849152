"""Stateless challenge tokens.

A challenge token is an ES256 JWT that carries everything the finish step of a
ceremony needs (challenge, username, user handle, purpose). Nothing is kept
server-side, so a token is only bounded by its expiry: it can be replayed
until then.

The signing key pair is generated once per process on a background thread and
never leaves memory, so a restart invalidates every in-flight ceremony.
"""
import enum
import logging
import threading
import time
from typing import Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

logger = logging.getLogger(__name__)

ALGORITHM = "ES256"
DEFAULT_TTL = 300

# Registered claims the service owns; callers can't override them
_RESERVED_CLAIMS = frozenset({"iss", "iat", "exp"})


class TokenError(Exception):
    pass


class TokenInvalid(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class ServiceNotReady(Exception):
    """The signing key is still being generated."""


class SigningKeyUnavailable(Exception):
    """Signing key generation failed; the process must not serve."""


class KeyState(enum.Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class SigningKeyPair:
    """P-256 key pair with an explicit INITIALIZING -> READY/FAILED lifecycle."""

    def __init__(self):
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._state = KeyState.INITIALIZING
        self._private_pem: Optional[bytes] = None
        self._public_pem: Optional[bytes] = None
        self._error: Optional[BaseException] = None

    @property
    def state(self) -> KeyState:
        return self._state

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self.generate, name="signing-keygen", daemon=True)
            self._thread.start()

    def generate(self) -> None:
        try:
            private_key = ec.generate_private_key(ec.SECP256R1())
            self._private_pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            self._public_pem = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        except Exception as e:
            self._error = e
            self._state = KeyState.FAILED
            logger.critical(f"Signing key generation failed: {e}")
        else:
            self._state = KeyState.READY
            logger.info("Keypair ready")
        finally:
            self._ready.set()

    def wait(self, timeout: Optional[float] = None) -> Tuple[bytes, bytes]:
        """Return ``(private_pem, public_pem)`` once READY.

        Raises ServiceNotReady if still INITIALIZING after ``timeout`` seconds
        and SigningKeyUnavailable if generation failed.
        """
        if not self._ready.wait(timeout):
            raise ServiceNotReady("Signing key not ready")
        if self._state is KeyState.FAILED:
            raise SigningKeyUnavailable("Signing key generation failed") from self._error
        return self._private_pem, self._public_pem


class ChallengeTokenService:
    def __init__(self, keys: SigningKeyPair, *, issuer: str, default_ttl: int = DEFAULT_TTL, ready_timeout: Optional[float] = 5.0):
        self._keys = keys
        self.issuer = issuer
        self.default_ttl = default_ttl
        self.ready_timeout = ready_timeout

    def issue(self, claims: dict, ttl: Optional[int] = None) -> str:
        private_pem, _ = self._keys.wait(self.ready_timeout)
        now = int(time.time())
        payload = {k: v for k, v in claims.items() if v is not None and k not in _RESERVED_CLAIMS}
        payload.update(
            iss=self.issuer,
            iat=now,
            exp=now + (self.default_ttl if ttl is None else ttl),
        )
        return jwt.encode(payload, private_pem.decode("ascii"), algorithm=ALGORITHM)

    def verify(self, token: str) -> dict:
        _, public_pem = self._keys.wait(self.ready_timeout)
        try:
            return jwt.decode(
                token,
                public_pem.decode("ascii"),
                algorithms=[ALGORITHM],
                issuer=self.issuer,
            )
        except ExpiredSignatureError as e:
            raise TokenExpired(str(e)) from e
        except JWTError as e:
            raise TokenInvalid(str(e)) from e
