import logging

from django.conf import settings
from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from common.input_validation import InputError, parse_json_body
from .errors import ErrorKind, Outcome
from .schemas import LoginFinishRequest, LoginStartRequest, RegistrationFinishRequest, RegistrationStartRequest
from .tokens import ServiceNotReady, SigningKeyUnavailable

logger = logging.getLogger(__name__)

# The only place error kinds become HTTP statuses; messages are deliberately generic
ERROR_RESPONSES = {
    ErrorKind.USERNAME_TAKEN: (400, "Username in use"),
    ErrorKind.UNKNOWN_USERNAME: (403, "Invalid username"),
    ErrorKind.UNKNOWN_CREDENTIAL: (403, "Unknown credentials"),
    ErrorKind.ATTESTATION_REJECTED: (403, "Attestation failed"),
    ErrorKind.ASSERTION_REJECTED: (403, "Assertion failed"),
}


def error_response(message: str, status: int) -> JsonResponse:
    return JsonResponse({"error": message}, status=status)


@method_decorator(csrf_exempt, name="dispatch")
class CeremonyView(View):
    """Base for the ceremony routes.

    Parses and validates the body, gates on signing-key readiness, runs the
    flow step, and maps its ``Outcome`` to a response.
    """

    relying_party = None
    request_type = None
    http_method_names = ["post"]

    def post(self, request):
        try:
            body = parse_json_body(request, max_bytes=settings.MAX_REQUEST_BYTES)
            payload = self.request_type.from_json(body)
        except InputError as e:
            logger.warning(f"{type(self).__name__}: {e.message}")
            return error_response(e.message, e.status)

        try:
            self.relying_party.require_ready()
            outcome = self.run(payload)
        except ServiceNotReady:
            logger.warning(f"{type(self).__name__}: signing key not ready, rejecting request")
            return error_response("Service starting", 503)
        except SigningKeyUnavailable:
            logger.error(f"{type(self).__name__}: signing key unavailable")
            return error_response("Service unavailable", 503)

        if not outcome.ok:
            status, message = ERROR_RESPONSES[outcome.error]
            return error_response(message, status)
        return JsonResponse(self.render(outcome.value))

    def run(self, payload) -> Outcome:
        raise NotImplementedError

    def render(self, value) -> dict:
        return {"token": value.token, "options": value.options}


class StartRegistration(CeremonyView):
    request_type = RegistrationStartRequest

    def run(self, payload):
        return self.relying_party.registration.start(payload.display_name, payload.user_name)


class FinishRegistration(CeremonyView):
    request_type = RegistrationFinishRequest

    def run(self, payload):
        return self.relying_party.registration.finish(payload.token, payload.result)

    def render(self, value):
        return {"status": "ok"}


class StartAuthentication(CeremonyView):
    request_type = LoginStartRequest

    def run(self, payload):
        return self.relying_party.authentication.start(payload.user_name)


class FinishAuthentication(CeremonyView):
    request_type = LoginFinishRequest

    def run(self, payload):
        return self.relying_party.authentication.finish(payload.token, payload.result)

    def render(self, value):
        return {
            "status": "ok",
            "user": {
                "userName": value.user_name,
                "displayName": value.display_name,
            },
        }
