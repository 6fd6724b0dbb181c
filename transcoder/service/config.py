"""
Configuration adapter for transcoder settings.

Reads the TRANSCODER_* Django settings once per job run and turns them into
an immutable TranscoderConfig that is passed explicitly to every component.
"""
import json
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from django.apps import apps
from django.core.exceptions import FieldDoesNotExist, ImproperlyConfigured


@dataclass(frozen=True)
class ContentArea:
    """
    Where documents of one kind may reference stored files.

    component/filearea identify the storage location of the files, and
    table/column the document text to search. ``table`` is a Django model
    label such as ``content.Page``.
    """
    component: str
    filearea: str
    table: str
    column: str

    @property
    def key(self):
        return f"{self.component}__{self.filearea}__{self.table}__{self.column}"

    def matches(self, stored_file):
        """Whether files stored at this file's location belong to this area"""
        return stored_file.component == self.component and stored_file.filearea == self.filearea

    def __str__(self):
        return self.key


@dataclass(frozen=True)
class EngineOptions:
    """Options passed to the transcoding engine"""
    ffmpeg_binary: str = 'ffmpeg'
    ffprobe_binary: str = 'ffprobe'
    timeout: int = 3600
    threads: int = 2
    audio_codec: str = 'libmp3lame'
    audio_kilobitrate: int = 128
    audio_channels: int = 2
    extra_params: dict = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class TranscoderConfig:
    concurrency_limit: int
    engine: EngineOptions
    content_areas: tuple
    mimetypes: tuple
    discovery_lookback: timedelta
    process_expiry: timedelta
    max_retries: int
    refcheck_window: timedelta = None
    disable_cron: bool = False
    data_root: Path = Path('data')
    source_url_prefix: str = '@@PLUGINFILE@@/'


REQUIRED_SETTINGS = [
    'TRANSCODER_CONCURRENCY_LIMIT',
    'TRANSCODER_FFMPEG_BINARY',
    'TRANSCODER_FFPROBE_BINARY',
    'TRANSCODER_FFMPEG_TIMEOUT',
    'TRANSCODER_FFMPEG_THREADS',
    'TRANSCODER_FFMPEG_AUDIO_CODEC',
    'TRANSCODER_FFMPEG_AUDIO_KILOBITRATE',
    'TRANSCODER_FFMPEG_AUDIO_CHANNELS',
    'TRANSCODER_MIMETYPES',
    'TRANSCODER_CONTENT_AREAS',
    'TRANSCODER_PROCESS_EXPIRY',
    'TRANSCODER_RETRIES',
]


def _missing(value):
    return value is None or value == '' or value == [] or value == ()


def parse_content_area(entry, validate_tables=True):
    """
    Build a ContentArea from a settings entry.

    Args:
        entry: dict with component, filearea, table and column keys, or a
            ContentArea instance
        validate_tables: If True, check that the model and column exist

    Returns:
        ContentArea

    Raises:
        ImproperlyConfigured: If the entry is malformed or points nowhere
    """
    if isinstance(entry, ContentArea):
        area = entry
    elif isinstance(entry, dict):
        keys = ('component', 'filearea', 'table', 'column')
        missing = [k for k in keys if not entry.get(k)]
        if missing:
            raise ImproperlyConfigured(
                f"Content area {entry!r} is missing {', '.join(missing)}"
            )
        area = ContentArea(*(str(entry[k]) for k in keys))
    else:
        raise ImproperlyConfigured(f"Content area must be a dict, got {entry!r}")

    if validate_tables:
        try:
            model = apps.get_model(area.table)
        except (LookupError, ValueError) as e:
            raise ImproperlyConfigured(f"Content area {area}: unknown table {area.table}") from e
        try:
            model._meta.get_field(area.column)
        except FieldDoesNotExist as e:
            raise ImproperlyConfigured(
                f"Content area {area}: {area.table} has no column {area.column}"
            ) from e

    return area


def _parse_extra_params(value):
    if _missing(value):
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ImproperlyConfigured(f"TRANSCODER_FFMPEG_EXTRA_PARAMS_VIDEO is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ImproperlyConfigured("TRANSCODER_FFMPEG_EXTRA_PARAMS_VIDEO must be a JSON object")
    return {str(k): str(v) for k, v in value.items()}


def _positive_int(name, value, allow_zero=False):
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ImproperlyConfigured(f"{name} must be an integer, got {value!r}") from e
    if number < 0 or (number == 0 and not allow_zero):
        raise ImproperlyConfigured(f"{name} must be {'non-negative' if allow_zero else 'positive'}")
    return number


def load_config(source=None, validate_tables=True):
    """
    Build the transcoder configuration from Django settings.

    Args:
        source: Object holding TRANSCODER_* attributes (default: django.conf.settings)
        validate_tables: If True, check content areas against installed models

    Returns:
        TranscoderConfig

    Raises:
        ImproperlyConfigured: If a required setting is missing or invalid
    """
    if source is None:
        from django.conf import settings as source

    def get(name, default=None):
        return getattr(source, name, default)

    missing = [name for name in REQUIRED_SETTINGS if _missing(get(name))]
    if missing:
        raise ImproperlyConfigured(f"Missing required transcoder settings: {', '.join(missing)}")

    engine = EngineOptions(
        ffmpeg_binary=str(get('TRANSCODER_FFMPEG_BINARY')),
        ffprobe_binary=str(get('TRANSCODER_FFPROBE_BINARY')),
        timeout=_positive_int('TRANSCODER_FFMPEG_TIMEOUT', get('TRANSCODER_FFMPEG_TIMEOUT')),
        threads=_positive_int('TRANSCODER_FFMPEG_THREADS', get('TRANSCODER_FFMPEG_THREADS')),
        audio_codec=str(get('TRANSCODER_FFMPEG_AUDIO_CODEC')),
        audio_kilobitrate=_positive_int(
            'TRANSCODER_FFMPEG_AUDIO_KILOBITRATE', get('TRANSCODER_FFMPEG_AUDIO_KILOBITRATE')
        ),
        audio_channels=_positive_int(
            'TRANSCODER_FFMPEG_AUDIO_CHANNELS', get('TRANSCODER_FFMPEG_AUDIO_CHANNELS')
        ),
        extra_params=_parse_extra_params(get('TRANSCODER_FFMPEG_EXTRA_PARAMS_VIDEO')),
    )

    areas = tuple(
        parse_content_area(entry, validate_tables=validate_tables)
        for entry in get('TRANSCODER_CONTENT_AREAS')
    )

    mimetypes = get('TRANSCODER_MIMETYPES')
    if isinstance(mimetypes, str):
        mimetypes = [m.strip() for m in mimetypes.split(',') if m.strip()]

    refcheck = _positive_int('TRANSCODER_REFCHECK_WINDOW', get('TRANSCODER_REFCHECK_WINDOW', 0), allow_zero=True)

    return TranscoderConfig(
        concurrency_limit=_positive_int('TRANSCODER_CONCURRENCY_LIMIT', get('TRANSCODER_CONCURRENCY_LIMIT')),
        engine=engine,
        content_areas=areas,
        mimetypes=tuple(mimetypes),
        discovery_lookback=timedelta(
            seconds=_positive_int(
                'TRANSCODER_DISCOVERY_LOOKBACK', get('TRANSCODER_DISCOVERY_LOOKBACK', 86400), allow_zero=True
            )
        ),
        process_expiry=timedelta(
            minutes=_positive_int('TRANSCODER_PROCESS_EXPIRY', get('TRANSCODER_PROCESS_EXPIRY'))
        ),
        max_retries=_positive_int('TRANSCODER_RETRIES', get('TRANSCODER_RETRIES'), allow_zero=True),
        refcheck_window=timedelta(minutes=refcheck) if refcheck else None,
        disable_cron=bool(get('TRANSCODER_DISABLE_CRON', False)),
        data_root=Path(get('TRANSCODER_DATA_ROOT') or 'data'),
        source_url_prefix=get('TRANSCODER_SOURCE_URL_PREFIX', '@@PLUGINFILE@@/') or '',
    )
