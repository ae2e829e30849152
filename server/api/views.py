import logging

from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import ParseError, UnsupportedMediaType
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from common.input_validation import InputError
from passkeys.schemas import PurgeUserRequest
from passkeys.tokens import KeyState

# Operational API handlers
#
# Not part of a ceremony: liveness, readiness, and the administrative purge
# The relying party handle arrives as a URL kwarg (see api/urls.py)
# The purge endpoint is trusted (no auth) and meant to sit behind the operator's network boundary

logger = logging.getLogger(__name__)

HEALTH_STATUS = {
    KeyState.READY: "ok",
    KeyState.INITIALIZING: "starting",
    KeyState.FAILED: "failed",
}


# Plain-text liveness check
@api_view(['GET'])
@permission_classes([AllowAny])
def echo(request):
    return HttpResponse("echo", content_type="text/plain")


# Readiness: 200 only once the signing key exists
@api_view(['GET'])
@permission_classes([AllowAny])
def health(request, relying_party):
    state = relying_party.state
    data = {
        'status': HEALTH_STATUS[state],
        'signingKey': state.value,
        'users': len(relying_party.registry),
    }
    code = status.HTTP_200_OK if state is KeyState.READY else status.HTTP_503_SERVICE_UNAVAILABLE
    return Response(data, status=code)


# Delete a user and all their credentials
# Idempotent: purging an unknown user still answers ok
@api_view(['POST'])
@permission_classes([AllowAny])
def purge_user(request, relying_party):
    try:
        payload = PurgeUserRequest.from_json(request.data)
    except (ParseError, UnsupportedMediaType, InputError) as e:
        logger.error(f"Invalid purge request: {e}")
        return Response({'error': 'Invalid request'}, status=status.HTTP_400_BAD_REQUEST)

    if relying_party.registry.delete(payload.user_name):
        logger.info(f"Purged user: {payload.user_name}")
    else:
        logger.info(f"Purge requested for unknown user: {payload.user_name}")
    return Response({'status': 'ok'})
