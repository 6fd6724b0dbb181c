"""
Tests for the management commands, operations and Huey tasks.
"""
import json
import os
import time
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import override_settings

from transcoder import tasks
from transcoder.models import TranscodeTask
from transcoder.operations import process_next_task, run_discovery
from transcoder.worker import OUTCOME_COMPLETED, OUTCOME_IDLE, WorkerResult
from transcoder.tests.factories import TranscoderTestCase


class TranscodeCommandTest(TranscoderTestCase):
    """Tests for ./manage.py transcode"""

    def setUp(self):
        super().setUp()
        self.settings_override = override_settings(TRANSCODER_DATA_ROOT=str(self.tmp / 'data'))
        self.settings_override.enable()
        self.addCleanup(self.settings_override.disable)

    def test_nothing_to_do_exits_normally(self):
        out = StringIO()

        call_command('transcode', stdout=out)

        self.assertIn('No tasks to process', out.getvalue())

    def test_json_output(self):
        out = StringIO()

        call_command('transcode', '--json', stdout=out)

        data = json.loads(out.getvalue())
        self.assertEqual(data['outcome'], OUTCOME_IDLE)
        self.assertIsNone(data['task_id'])

    @override_settings(TRANSCODER_CONCURRENCY_LIMIT=None)
    def test_missing_settings_raise_command_error(self):
        with self.assertRaises(CommandError) as ctx:
            call_command('transcode', stdout=StringIO())

        self.assertIn('TRANSCODER_CONCURRENCY_LIMIT', str(ctx.exception))

    @patch('transcoder.management.commands.transcode.process_task')
    def test_task_option_processes_that_task(self, mock_process_task):
        mock_process_task.return_value = WorkerResult(OUTCOME_COMPLETED, 5, 9)
        out = StringIO()

        call_command('transcode', '--task', '5', stdout=out)

        mock_process_task.assert_called_once_with(5)
        self.assertIn('Task 5 completed', out.getvalue())


class DiscoverCommandTest(TranscoderTestCase):
    """Tests for ./manage.py discover"""

    @patch('transcoder.management.commands.discover.dispatch_transcode')
    def test_no_dispatch_option(self, mock_dispatch):
        with override_settings(TRANSCODER_DATA_ROOT=str(self.tmp / 'data')):
            self.add_source()
            out = StringIO()

            call_command('discover', '--no-dispatch', stdout=out)

        self.assertIn('1 queued', out.getvalue())
        mock_dispatch.assert_not_called()
        self.assertEqual(TranscodeTask.objects.count(), 1)


class ReconcileCommandTest(TranscoderTestCase):
    def test_json_report(self):
        out = StringIO()

        with override_settings(TRANSCODER_DATA_ROOT=str(self.tmp / 'data')):
            call_command('reconcile', '--json', stdout=out)

        data = json.loads(out.getvalue())
        self.assertEqual(data['recycled'], 0)
        self.assertEqual(data['unowned_deleted'], 0)
        self.assertEqual(data['errors'], 0)


class CleanupTmpCommandTest(TranscoderTestCase):
    """Tests for ./manage.py cleanup_tmp"""

    def setUp(self):
        super().setUp()
        self.tempdir = self.tmp / 'data' / 'temp' / 'transcoder'
        self.old = self.tempdir / 'tmpold'
        self.new = self.tempdir / 'tmpnew'
        for path in (self.old, self.new):
            path.mkdir(parents=True)
            (path / 'partial.mp4').write_bytes(b'x' * 10)
        two_days_ago = time.time() - 2 * 24 * 3600
        os.utime(self.old, (two_days_ago, two_days_ago))

    def test_dry_run_keeps_directories(self):
        out = StringIO()
        with override_settings(TRANSCODER_DATA_ROOT=str(self.tmp / 'data')):
            call_command('cleanup_tmp', '--dry-run', stdout=out)

        self.assertIn('DRY RUN', out.getvalue())
        self.assertTrue(self.old.exists())

    def test_removes_only_old_directories(self):
        with override_settings(TRANSCODER_DATA_ROOT=str(self.tmp / 'data')):
            call_command('cleanup_tmp', stdout=StringIO())

        self.assertFalse(self.old.exists())
        self.assertTrue(self.new.exists())


class OperationsTest(TranscoderTestCase):
    """Tests for the operations behind commands and tasks"""

    def test_process_next_task_converts_oldest(self):
        source = self.add_source()
        task_id = self.c.task_store.insert(source.id)

        result = process_next_task(self.config, engine=self.engine)

        self.assertEqual(result.outcome, OUTCOME_COMPLETED)
        self.assertEqual(result.task_id, task_id)

    def test_run_discovery_without_dispatch(self):
        self.add_source()

        report = run_discovery(self.config)

        self.assertEqual(report.queued, 1)
        self.assertEqual(report.dispatched, 0)


class HueyTaskTest(TranscoderTestCase):
    """Tests for the Huey task wrappers"""

    @patch('transcoder.tasks.operations.process_task')
    def test_transcode_task_runs_operation(self, mock_process_task):
        mock_process_task.return_value = WorkerResult(OUTCOME_COMPLETED, 3, 4)

        outcome = tasks.transcode_task.call_local(3)

        mock_process_task.assert_called_once_with(3)
        self.assertEqual(outcome, OUTCOME_COMPLETED)

    @patch('transcoder.tasks.operations.run_discovery')
    def test_discover_files_dispatches_to_consumer(self, mock_run_discovery):
        tasks.discover_files.call_local()

        mock_run_discovery.assert_called_once_with(dispatch=tasks.dispatch_transcode)

    @override_settings(TRANSCODER_MIMETYPES=[])
    def test_bad_settings_are_logged_not_raised(self):
        with self.assertLogs('transcoder.tasks', level='ERROR') as logs:
            self.assertIsNone(tasks.reconcile_tasks.call_local())

        self.assertIn('TRANSCODER_MIMETYPES', logs.output[0])

    @patch('transcoder.tasks.transcode_task')
    def test_dispatch_enqueues_task(self, mock_transcode_task):
        tasks.dispatch_transcode(8)

        mock_transcode_task.assert_called_once_with(8)
