from .base import *

DEBUG = False
SECRET_KEY = "test-secret-key-not-for-production-use-only"

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

RIDE_PRICE_PER_METER = 2
WALLET_BALANCE_FLOOR = None

LOG_LEVEL = "WARNING"
LOGGING["loggers"] = {
    name: {**config, "level": "WARNING"}
    for name, config in LOGGING["loggers"].items()
}
