"""
Service layer for media conversion.

This module contains the pieces of the transcoder that do not touch the
database directly: configuration, the ffmpeg engine adapter, markup handling,
the document rewriter and the reference scanner. They are used by:
- The Huey background tasks (transcoder/tasks.py)
- The management commands (transcoder/management/commands/)
"""
