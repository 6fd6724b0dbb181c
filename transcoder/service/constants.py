"""
Media format constants.

Centralized definitions of conversion targets and derived-file naming.
"""
from dataclasses import dataclass

# Marker embedded in the name of every file produced by the transcoder
DERIVED_MARKER = '_transcoded_'

DERIVED_DATESTAMP_FORMAT = '%Y%m%d%H%M%S'


@dataclass(frozen=True)
class MediaTarget:
    """Web-friendly output for a given input mimetype"""
    kind: str
    tag: str
    mimetype: str
    extension: str


VIDEO_TARGET = MediaTarget(kind='video', tag='video', mimetype='video/mp4', extension='.mp4')
AUDIO_TARGET = MediaTarget(kind='audio', tag='audio', mimetype='audio/mp3', extension='.mp3')

# Input mimetypes the engine knows how to convert
CONVERTIBLE_MIMETYPES = {
    'video/webm': VIDEO_TARGET,
    'video/ogg': VIDEO_TARGET,
    'video/x-matroska': VIDEO_TARGET,
    'video/quicktime': VIDEO_TARGET,
    'video/x-msvideo': VIDEO_TARGET,
    'audio/ogg': AUDIO_TARGET,
    'audio/webm': AUDIO_TARGET,
    'audio/wav': AUDIO_TARGET,
    'audio/x-wav': AUDIO_TARGET,
    'audio/flac': AUDIO_TARGET,
}

# HEIC files are stored without a mimetype, so discovery matches them by name
HEIC_MIMETYPE = 'image/heic'
HEIC_EXTENSIONS = ['.heic', '.HEIC']


def resolve_target(mimetype):
    """
    Get the conversion target for a mimetype.

    Returns:
        MediaTarget, or None if the mimetype cannot be converted
    """
    if not mimetype:
        return None
    return CONVERTIBLE_MIMETYPES.get(mimetype.lower())


def media_tag_for(mimetype):
    """HTML element name (video/audio) used to embed a file of this mimetype"""
    target = resolve_target(mimetype)
    if target:
        return target.tag
    return (mimetype or '').split('/')[0]


def derived_filename(original_filename, extension, when):
    """
    Build the name of a converted file.

    Example:
        >>> derived_filename('lecture.webm', '.mp4', datetime(2024, 5, 1, 9, 30))
        'lecture_transcoded_20240501093000.mp4'
    """
    stem = original_filename.rsplit('.', 1)[0] if '.' in original_filename else original_filename
    return f"{stem}{DERIVED_MARKER}{when.strftime(DERIVED_DATESTAMP_FORMAT)}{extension}"


def is_derived_filename(filename):
    return DERIVED_MARKER in (filename or '')
