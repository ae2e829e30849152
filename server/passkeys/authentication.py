"""Login ceremony.

``start`` either targets one user (allow-list of their credential IDs) or
issues an unrestricted challenge for a discoverable-credential login.
``finish`` resolves the credential, verifies the assertion and stores the new
signature counter. Signature checks run without any registry lock held; the
counter compare-and-store then runs under the registry and owner locks, after
confirming the owner is still registered. Two racing assertions with the same
counter can't both win, and a purge mid-login is never authenticated.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from accounts.registry import CredentialRegistry, UserNotFound
from .codec import b64_encode, handle_from_claim, handle_to_claim
from .engine import AssertionPayload, CeremonyVerifier
from .errors import ErrorKind, Outcome, VerificationError
from .registration import ChallengeGrant
from .tokens import ChallengeTokenService, TokenError

logger = logging.getLogger(__name__)

PURPOSE = "authentication"


@dataclass(frozen=True)
class AuthenticatedUser:
    user_name: str
    display_name: str


class AuthenticationFlow:
    def __init__(self, registry: CredentialRegistry, tokens: ChallengeTokenService, engine: CeremonyVerifier):
        self.registry = registry
        self.tokens = tokens
        self.engine = engine

    def start(self, user_name: Optional[str] = None) -> Outcome:
        claims = {"purpose": PURPOSE}
        credentials = []

        if user_name:
            logger.info(f"Assertion request for username: {user_name}")
            try:
                user = self.registry.fetch(user_name)
            except UserNotFound:
                user = None
            # A reservation that never finished is not a login target
            if user is None or not user.is_finalized:
                logger.warning(f"Unknown username: {user_name}")
                return Outcome.failure(ErrorKind.UNKNOWN_USERNAME)
            with user.lock:
                credentials = list(user.credentials)
            claims.update(userName=user.user_name, sub=handle_to_claim(user.user_handle))
        else:
            # If no username is present, treat it as resident key login
            logger.info("General assertion request")

        options, state = self.engine.authentication_options(credentials)
        claims.update(challenge=state["challenge"], uv=state["user_verification"])
        token = self.tokens.issue(claims)
        return Outcome.success(ChallengeGrant(token=token, options=options))

    def finish(self, token: str, result: AssertionPayload) -> Outcome:
        try:
            claims = self.tokens.verify(token)
        except TokenError as e:
            logger.warning(f"Assertion failed: {type(e).__name__}: {e}")
            return Outcome.failure(ErrorKind.ASSERTION_REJECTED, str(e))
        if claims.get("purpose") != PURPOSE:
            logger.warning("Assertion failed: token was not issued for authentication")
            return Outcome.failure(ErrorKind.ASSERTION_REJECTED, "wrong token purpose")

        # Find the credentials that the challenge was signed by
        user_name = claims.get("userName")
        if user_name:
            logger.info(f"Login attempt against username: {user_name}")
            try:
                user = self.registry.fetch(user_name)
                cred = self.registry.find_credential_by_user(user_name, result.credential_id)
            except UserNotFound:
                user, cred = None, None
            if user is not None and user.user_handle != handle_from_claim(claims.get("sub", "")):
                # Token was issued to a previous account under this name
                cred = None
        else:
            logger.info("Resident key login attempt")
            found = self.registry.find_credential_global(result.credential_id)
            user, cred = found if found is not None else (None, None)
            if user is not None:
                logger.info(f"Matching user found: {user.user_name}")

        if cred is None:
            logger.warning(f"Matching credentials not found: {b64_encode(result.credential_id)}")
            return Outcome.failure(ErrorKind.UNKNOWN_CREDENTIAL)

        state = {"challenge": claims["challenge"], "user_verification": claims.get("uv")}
        try:
            counter = self.engine.verify_assertion(state, cred, user.user_handle, result)
            # Owner still registered, counter compared and stored as one step
            self.registry.update_counter(user, cred, counter, check=self.engine.check_counter)
        except VerificationError as e:
            logger.warning(f"Assertion failed: {e}")
            return Outcome.failure(ErrorKind.ASSERTION_REJECTED, str(e))
        except UserNotFound:
            logger.warning(f"Assertion failed: {user.user_name} was removed mid-login")
            return Outcome.failure(ErrorKind.UNKNOWN_CREDENTIAL)

        logger.info(f"Login successful for username: {user.user_name}")
        return Outcome.success(AuthenticatedUser(user_name=user.user_name, display_name=user.display_name))
