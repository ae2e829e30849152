import logging
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "settings")

application = get_wsgi_application()

# Don't serve until the signing key exists; a failed key generation aborts startup
from urls import relying_party  # noqa: E402

relying_party.require_ready(timeout=None)
logging.getLogger(__name__).info("Relying party ready")
