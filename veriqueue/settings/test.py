from .base import *

DEBUG = False
SECRET_KEY = "test"
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "veriqueue-tests",
    }
}

STORAGES["staticfiles"] = {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

VERIFICATION_BROADCASTER = "local"
VERIFICATION_MOCK_STEP_DELAY_SECONDS = 0
VERIFICATION_STREAM_TIMEOUT_SECONDS = 2
VERIFICATION_POST_COMPLETION_ROUTE = "/onboarding/contracting"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LOGGING["handlers"]["console"]["formatter"] = "simple"
LOGGING["loggers"]["veriqueue"]["level"] = "WARNING"
