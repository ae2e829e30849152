from django.urls import path

from .views import (
    StartRegistration,
    FinishRegistration,
    StartAuthentication,
    FinishAuthentication,
)


def ceremony_urlpatterns(relying_party):
    return [
        path("register/start", StartRegistration.as_view(relying_party=relying_party), name="passkeys_register_start"),
        path("register/finish", FinishRegistration.as_view(relying_party=relying_party), name="passkeys_register_finish"),
        path("login/start", StartAuthentication.as_view(relying_party=relying_party), name="passkeys_login_start"),
        path("login/finish", FinishAuthentication.as_view(relying_party=relying_party), name="passkeys_login_finish"),
    ]
