"""
Tests for service/trace.py
"""
import logging
from unittest import TestCase

from transcoder.service.trace import JobTrace


class RecordingLogger:
    def __init__(self):
        self.lines = []

    def log(self, level, message, **kwargs):
        self.lines.append((level, message))


class JobTraceTest(TestCase):
    def test_indents_by_depth(self):
        logger = RecordingLogger()
        trace = JobTrace(logger)

        trace.start("Starting crawler task.")
        trace.log("Candidate file found", 1)
        trace.warning("File missing", 2)

        self.assertEqual(logger.lines, [
            (logging.INFO, "Starting crawler task."),
            (logging.INFO, "  Candidate file found"),
            (logging.WARNING, "    File missing"),
        ])

    def test_defaults_to_module_logger(self):
        with self.assertLogs('transcoder.worker', level='DEBUG') as logs:
            JobTrace(name='transcoder.worker').debug("Rebuilding cache", 1)

        self.assertEqual(logs.output, ['DEBUG:transcoder.worker:  Rebuilding cache'])
