import logging
import uuid
from dataclasses import dataclass

from accounts.models import Credential
from accounts.registry import CredentialRegistry, DuplicateCredential, UserNotFound, UsernameTaken
from .codec import b64_encode, handle_from_claim, handle_to_claim
from .engine import AttestationPayload, CeremonyVerifier
from .errors import ErrorKind, Outcome, VerificationError
from .tokens import ChallengeTokenService, TokenError

logger = logging.getLogger(__name__)

PURPOSE = "registration"


@dataclass(frozen=True)
class ChallengeGrant:
    """What a start step hands back to the client: opaque token + options."""

    token: str
    options: dict


class RegistrationFlow:
    """Enrollment: ``start`` reserves a username, ``finish`` attaches a credential.

    A failed finish releases the reservation so the name can be retried. A
    token that fails verification leaves the registry untouched; its claims
    can't be trusted to name a reservation.
    """

    def __init__(self, registry: CredentialRegistry, tokens: ChallengeTokenService, engine: CeremonyVerifier):
        self.registry = registry
        self.tokens = tokens
        self.engine = engine

    def start(self, display_name: str, user_name: str) -> Outcome:
        logger.info(f"Registration request for username: {user_name}")
        stale_after = self.tokens.default_ttl
        if not self.registry.is_reservable(user_name, stale_after=stale_after):
            logger.warning(f"Username in use: {user_name}")
            return Outcome.failure(ErrorKind.USERNAME_TAKEN)

        # Generate a user handle
        user_handle = str(uuid.uuid4()).encode()
        options, state = self.engine.registration_options(user_name, display_name, user_handle)

        # Sign before reserving so a signing failure can't strand a reservation
        token = self.tokens.issue({
            "purpose": PURPOSE,
            "sub": handle_to_claim(user_handle),
            "userName": user_name,
            "challenge": state["challenge"],
            "uv": state["user_verification"],
        })

        try:
            self.registry.reserve_username(
                user_name,
                display_name,
                user_handle=user_handle,
                stale_after=stale_after,
            )
        except UsernameTaken:
            logger.warning(f"Username in use: {user_name}")
            return Outcome.failure(ErrorKind.USERNAME_TAKEN)

        return Outcome.success(ChallengeGrant(token=token, options=options))

    def finish(self, token: str, result: AttestationPayload) -> Outcome:
        try:
            claims = self.tokens.verify(token)
        except TokenError as e:
            logger.warning(f"Attestation failed: {type(e).__name__}: {e}")
            return Outcome.failure(ErrorKind.ATTESTATION_REJECTED, str(e))

        user_name = claims.get("userName")
        if claims.get("purpose") != PURPOSE or not user_name or "sub" not in claims:
            logger.warning("Attestation failed: token was not issued for registration")
            return Outcome.failure(ErrorKind.ATTESTATION_REJECTED, "wrong token purpose")

        logger.info(f"Registration finish for username: {user_name}")

        try:
            user = self.registry.fetch(user_name)
        except UserNotFound:
            logger.warning(f"Attestation failed: no reservation for {user_name}")
            return Outcome.failure(ErrorKind.ATTESTATION_REJECTED, "no reservation")

        user_handle = handle_from_claim(claims["sub"])
        if user.user_handle is not None and user.user_handle != user_handle:
            # Same name, different account (purged and started again)
            logger.warning(f"Attestation failed: stale token for {user_name}")
            return Outcome.failure(ErrorKind.ATTESTATION_REJECTED, "user handle mismatch")

        state = {"challenge": claims["challenge"], "user_verification": claims.get("uv")}
        try:
            verified = self.engine.verify_attestation(state, result)
            credential = Credential(
                credential_id=verified.credential_id,
                public_key=verified.public_key,
                sign_count=verified.sign_count,
                aaguid=verified.aaguid,
            )
            self.registry.add_credential(user_name, credential, user_handle=user_handle, record=user)
        except (VerificationError, DuplicateCredential, UserNotFound) as e:
            # Clean up user since registration failed
            if self.registry.release_reservation(user_name, user):
                logger.info(f"Released reservation: {user_name}")
            logger.warning(f"Attestation failed: {e}")
            return Outcome.failure(ErrorKind.ATTESTATION_REJECTED, str(e))

        logger.info(f"New credential registered: {b64_encode(credential.credential_id)}")
        return Outcome.success(user)
