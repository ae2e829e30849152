import os
from pathlib import Path

from django.core.exceptions import ImproperlyConfigured
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

load_dotenv(BASE_DIR.parent / ".env")

SECRET_KEY = os.getenv("SECRET_KEY", "django-insecure-change-me")

DEBUG = os.getenv("DEBUG", "1") == "1"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",

    # Third party
    "rest_framework",
    "accounts",
    "passkeys",
    "api",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "urls"
WSGI_APPLICATION = "wsgi.application"

# Registry lives in memory; durability across restarts is not a goal
DATABASES = {}

APPEND_SLASH = False

# DRF
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.AllowAny",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
    ],
    "UNAUTHENTICATED_USER": None,
}


# ----- Relying party -----

def _choice(name, default, allowed):
    value = os.getenv(name, default).strip().lower()
    if value not in allowed:
        raise ImproperlyConfigured(f"{name} must be one of {sorted(allowed)}, got {value!r}")
    return value or None


PORT = int(os.getenv("PORT", "8080"))

# Hostname that the server runs on - used by FIDO2
RP_ID = os.getenv("RP_ID", "localhost")
RP_NAME = os.getenv("RP_NAME", "Passkey Server")
# Origin URL (with protocol and port) that responses should originate from
RP_ORIGIN = os.getenv("RP_ORIGIN", f"https://{RP_ID}")

CHALLENGE_TOKEN_TTL = int(os.getenv("CHALLENGE_TOKEN_TTL", "300"))
SIGNING_KEY_READY_TIMEOUT = float(os.getenv("SIGNING_KEY_READY_TIMEOUT", "5"))
CEREMONY_TIMEOUT_MS = int(os.getenv("CEREMONY_TIMEOUT_MS", "60000"))
MAX_REQUEST_BYTES = int(os.getenv("MAX_REQUEST_BYTES", "200000"))

# Platform authenticators ('platform') - e.g. Windows Hello, Touch ID
# Roaming authenticators ('cross-platform') - FIDO2 security keys
AUTHENTICATOR_ATTACHMENT = _choice("AUTHENTICATOR_ATTACHMENT", "cross-platform", {"", "platform", "cross-platform"})
RESIDENT_KEY_REQUIREMENT = _choice("RESIDENT_KEY_REQUIREMENT", "discouraged", {"discouraged", "preferred", "required"})
USER_VERIFICATION = _choice("USER_VERIFICATION", "preferred", {"discouraged", "preferred", "required"})


# ----- Logging -----

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)-5s --- %(name)-20s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "filters": {
        "below_error": {
            "()": "django.utils.log.CallbackFilter",
            "callback": lambda record: record.levelno < 40,
        },
    },
    "handlers": {
        # ERROR to stderr, rest to stdout
        "stdout": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "filters": ["below_error"],
            "formatter": "plain",
        },
        "stderr": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "level": "ERROR",
            "formatter": "plain",
        },
    },
    "root": {
        "handlers": ["stdout", "stderr"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        app: {"level": os.getenv(f"{app.upper()}_LOG_LEVEL", LOG_LEVEL).upper()}
        for app in ("passkeys", "accounts", "api")
    },
}
