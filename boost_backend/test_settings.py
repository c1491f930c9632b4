"""
Test settings: in-memory SQLite and eager Celery for fast test execution.
"""
from .settings import *  # noqa: F401,F403

DEBUG = False

ALLOWED_HOSTS = ['localhost', '127.0.0.1', 'testserver']

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

AUTH_PASSWORD_VALIDATORS = []

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

STORAGES = {
    'default': {
        'BACKEND': 'django.core.files.storage.FileSystemStorage',
    },
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}

# Fail fast and never reach the network from tests
CRAWLER_TIMEOUT_SECONDS = 2
OPENAI_API_KEY = ''

LOGGING['loggers']['django']['level'] = 'WARNING'  # noqa: F405
