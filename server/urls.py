from django.conf import settings

from api.urls import api_urlpatterns
from passkeys.service import RelyingParty
from passkeys.urls import ceremony_urlpatterns

# Built once per process; signing-key generation starts here and every view gets this handle
relying_party = RelyingParty.from_settings(settings).start()

urlpatterns = [
    *ceremony_urlpatterns(relying_party),
    *api_urlpatterns(relying_party),
]
