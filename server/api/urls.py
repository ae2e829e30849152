from django.urls import path
from .views import echo, health, purge_user


def api_urlpatterns(relying_party):
    rp = {'relying_party': relying_party}
    return [
        path('echo', echo, name='echo'),
        path('purge', purge_user, rp, name='purge_user'),
        path('api/health/', health, rp, name='health'),
    ]
