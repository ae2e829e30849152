import logging
from typing import Optional

from accounts.registry import CredentialRegistry
from .authentication import AuthenticationFlow
from .engine import CeremonyVerifier
from .registration import RegistrationFlow
from .tokens import ChallengeTokenService, KeyState, SigningKeyPair

logger = logging.getLogger(__name__)


class RelyingParty:
    """Owns the process-wide state: registry, signing key, and both flows.

    Built once by the URLconf and handed to every view; nothing here is a
    module global. ``start()`` kicks off signing-key generation, and views
    call ``require_ready()`` before touching a flow.
    """

    def __init__(
        self,
        *,
        rp_id: str,
        rp_name: str,
        origin: str,
        token_ttl: int = 300,
        ready_timeout: Optional[float] = 5.0,
        user_verification: Optional[str] = "preferred",
        authenticator_attachment: Optional[str] = None,
        resident_key: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        registry: Optional[CredentialRegistry] = None,
        keys: Optional[SigningKeyPair] = None,
    ):
        self.registry = registry if registry is not None else CredentialRegistry()
        self.keys = keys if keys is not None else SigningKeyPair()
        self.tokens = ChallengeTokenService(self.keys, issuer=rp_id, default_ttl=token_ttl, ready_timeout=ready_timeout)
        self.engine = CeremonyVerifier(
            rp_id,
            rp_name,
            origin,
            user_verification=user_verification,
            authenticator_attachment=authenticator_attachment,
            resident_key=resident_key,
            timeout_ms=timeout_ms,
        )
        self.registration = RegistrationFlow(self.registry, self.tokens, self.engine)
        self.authentication = AuthenticationFlow(self.registry, self.tokens, self.engine)
        self.ready_timeout = ready_timeout

    @classmethod
    def from_settings(cls, settings) -> "RelyingParty":
        return cls(
            rp_id=settings.RP_ID,
            rp_name=settings.RP_NAME,
            origin=settings.RP_ORIGIN,
            token_ttl=settings.CHALLENGE_TOKEN_TTL,
            ready_timeout=settings.SIGNING_KEY_READY_TIMEOUT,
            user_verification=settings.USER_VERIFICATION,
            authenticator_attachment=settings.AUTHENTICATOR_ATTACHMENT,
            resident_key=settings.RESIDENT_KEY_REQUIREMENT,
            timeout_ms=settings.CEREMONY_TIMEOUT_MS,
        )

    @property
    def state(self) -> KeyState:
        return self.keys.state

    def start(self) -> "RelyingParty":
        logger.info(f"Starting relying party {self.engine.rp.id} for origin {self.engine.origin}")
        self.keys.start()
        return self

    def require_ready(self, timeout: Optional[float] = None) -> None:
        """Block until the signing key is usable.

        Raises ServiceNotReady or SigningKeyUnavailable.
        """
        self.keys.wait(self.ready_timeout if timeout is None else timeout)
