"""
Django settings for the webmedia project.

Most values can be overridden through environment variables so the same
settings module serves local development, the huey consumer and the
cron-driven CLI.
"""

import json
import os
from pathlib import Path

from huey import SqliteHuey

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_int(name, default):
    value = os.environ.get(name)
    if value in (None, ''):
        return default
    return int(value)


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-webmedia-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'huey.contrib.djhuey',
    'content',
    'transcoder',
]

MIDDLEWARE = [
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'webmedia.urls'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('DJANGO_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
        'OPTIONS': {
            'timeout': 30,
        },
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'webmedia',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_TZ = True

# Huey
# Tasks run inline in DEBUG unless HUEY_IMMEDIATE says otherwise
HUEY = SqliteHuey(
    'webmedia',
    filename=os.environ.get('HUEY_DB_PATH', str(BASE_DIR / 'huey.sqlite3')),
    immediate=env_bool('HUEY_IMMEDIATE', DEBUG),
)

# Logging
TRANSCODER_LOG_LEVEL = os.environ.get('TRANSCODER_LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'job': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'job',
        },
    },
    'loggers': {
        'transcoder': {
            'handlers': ['console'],
            'level': TRANSCODER_LOG_LEVEL,
            'propagate': False,
        },
        'huey': {
            'handlers': ['console'],
            'level': 'INFO',
        },
    },
}

# Transcoder
TRANSCODER_DATA_ROOT = os.environ.get('TRANSCODER_DATA_ROOT', str(BASE_DIR / 'data'))
TRANSCODER_DISABLE_CRON = env_bool('TRANSCODER_DISABLE_CRON', False)
TRANSCODER_CONCURRENCY_LIMIT = env_int('TRANSCODER_CONCURRENCY_LIMIT', 1)

TRANSCODER_FFMPEG_BINARY = os.environ.get('TRANSCODER_FFMPEG_BINARY', 'ffmpeg')
TRANSCODER_FFPROBE_BINARY = os.environ.get('TRANSCODER_FFPROBE_BINARY', 'ffprobe')
TRANSCODER_FFMPEG_TIMEOUT = env_int('TRANSCODER_FFMPEG_TIMEOUT', 3600)
TRANSCODER_FFMPEG_THREADS = env_int('TRANSCODER_FFMPEG_THREADS', 2)
TRANSCODER_FFMPEG_AUDIO_CODEC = os.environ.get('TRANSCODER_FFMPEG_AUDIO_CODEC', 'libmp3lame')
TRANSCODER_FFMPEG_AUDIO_KILOBITRATE = env_int('TRANSCODER_FFMPEG_AUDIO_KILOBITRATE', 128)
TRANSCODER_FFMPEG_AUDIO_CHANNELS = env_int('TRANSCODER_FFMPEG_AUDIO_CHANNELS', 2)
# JSON object, e.g. {"-vf": "scale=-1:720", "-movflags": "+faststart"}
TRANSCODER_FFMPEG_EXTRA_PARAMS_VIDEO = json.loads(
    os.environ.get('TRANSCODER_FFMPEG_EXTRA_PARAMS_VIDEO', '{}')
)

# Each entry: component, filearea, table (model label), column
TRANSCODER_CONTENT_AREAS = [
    {'component': 'mod_page', 'filearea': 'intro', 'table': 'content.Page', 'column': 'intro'},
    {'component': 'mod_page', 'filearea': 'content', 'table': 'content.Page', 'column': 'content'},
]
TRANSCODER_MIMETYPES = [
    m for m in os.environ.get('TRANSCODER_MIMETYPES', 'video/webm,audio/ogg').split(',') if m
]

# Seconds to look back past the discovery high-water mark
TRANSCODER_DISCOVERY_LOOKBACK = env_int('TRANSCODER_DISCOVERY_LOOKBACK', 60 * 60 * 24)
# Minutes before an in-progress task is considered abandoned
TRANSCODER_PROCESS_EXPIRY = env_int('TRANSCODER_PROCESS_EXPIRY', 30)
TRANSCODER_RETRIES = env_int('TRANSCODER_RETRIES', 2)
# Minutes after completion during which references are re-checked (0 disables)
TRANSCODER_REFCHECK_WINDOW = env_int('TRANSCODER_REFCHECK_WINDOW', 30)
TRANSCODER_SOURCE_URL_PREFIX = os.environ.get('TRANSCODER_SOURCE_URL_PREFIX', '@@PLUGINFILE@@/')

TRANSCODER_DISCOVERY_CRON = os.environ.get('TRANSCODER_DISCOVERY_CRON', '*/5')
TRANSCODER_RECONCILE_CRON = os.environ.get('TRANSCODER_RECONCILE_CRON', '*/15')
