"""
Job trace output.

Jobs report progress as indented lines, one run at a time, on top of any
logger exposing ``log(level, message)``. A ``logging.Logger`` works, and
tests can pass a recording logger instead.
"""
import logging


class JobTrace:
    def __init__(self, logger=None, name='transcoder'):
        self.logger = logger or logging.getLogger(name)

    def log(self, message, depth=0, level=logging.INFO):
        self.logger.log(level, '  ' * depth + message)

    def debug(self, message, depth=0):
        self.log(message, depth, logging.DEBUG)

    def warning(self, message, depth=0):
        self.log(message, depth, logging.WARNING)

    def exception(self, message, depth=0):
        """Log at error level with the active exception attached"""
        self.logger.log(logging.ERROR, '  ' * depth + message, exc_info=True)

    def start(self, message):
        self.log(message)

    def finish(self, message):
        self.log(message)
