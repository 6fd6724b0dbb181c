"""
Tests for the reconciliation job.
"""
from datetime import timedelta
from unittest.mock import patch

from transcoder.models import StoredFile, TranscodeTask
from transcoder.reconciliation import Reconciler
from transcoder.worker import OUTCOME_COMPLETED, Worker
from transcoder.tests.factories import TranscoderTestCase, video_html


class ReconcilerTestCase(TranscoderTestCase):
    def reconciler(self):
        c = self.c
        return Reconciler(c.config, c.task_store, c.content_store, c.scanner, c.updater, clock=self.clock)

    def transcode(self, source):
        """Queue and convert a source file, returning the derived file"""
        c = self.c
        task_id = c.task_store.insert(source.id)
        result = Worker(
            c.config, c.task_store, c.content_store, c.scanner, c.updater, c.engine, clock=self.clock
        ).run(task_id)
        self.assertEqual(result.outcome, OUTCOME_COMPLETED)
        return task_id, StoredFile.objects.get(pk=result.derived_file_id)


class RecycleTest(ReconcilerTestCase):
    """Expired in-progress tasks"""

    def _stuck(self, retries):
        task_id = self.c.task_store.insert(self.add_source(f'stuck{retries}.webm').id)
        TranscodeTask.objects.filter(pk=task_id).update(
            status=TranscodeTask.STATUS_IN_PROGRESS,
            started_at=self.clock.now - timedelta(hours=25),
            retries=retries,
        )
        return task_id

    def test_expired_tasks_recycled_or_failed(self):
        fresh = self._stuck(retries=0)
        exhausted = self._stuck(retries=3)

        report = self.reconciler().run()

        self.assertEqual(report.recycled, 1)
        self.assertEqual(report.failed, 1)
        fresh = self.c.task_store.get(fresh)
        self.assertEqual((fresh.status, fresh.retries), (TranscodeTask.STATUS_READY, 1))
        exhausted = self.c.task_store.get(exhausted)
        self.assertEqual((exhausted.status, exhausted.retries), (TranscodeTask.STATUS_FAILED, 3))


class ReferenceCheckTest(ReconcilerTestCase):
    """Repairing references of recently completed tasks"""

    def test_unreferenced_output_is_deleted(self):
        source = self.add_source('attachment.webm')
        task_id, derived = self.transcode(source)
        blob = self.c.content_store.get_physical_path(derived)

        report = self.reconciler().run()

        self.assertEqual(report.orphans_deleted, 1)
        self.assertFalse(StoredFile.objects.filter(pk=derived.pk).exists())
        self.assertFalse(blob.exists())
        self.assertTrue((self.c.content_store.trashdir / derived.contenthash).exists())
        self.assertIsNone(self.c.task_store.get(task_id))
        self.assertTrue(StoredFile.objects.filter(pk=source.pk).exists())
        self.assertTrue(self.c.content_store.has_content(source))

    def test_lost_reference_is_restored(self):
        """Only documents that lost the derived source are rewritten"""
        source = self.add_source('lecture.webm')
        kept = self.add_page(content=video_html('lecture.webm'), title='Kept')
        lost = self.add_page(content=video_html('lecture.webm'), title='Lost', course_id=8)
        _, derived = self.transcode(source)
        kept_content = self.reload(kept).content
        self.assertIn(derived.filename, kept_content)

        # Editor saves the page with markup loaded before the conversion
        lost.content = video_html('lecture.webm')
        lost.save()

        report = self.reconciler().run()

        self.assertEqual(report.references_restored, 1)
        self.assertEqual(self.reload(kept).content, kept_content)
        self.assertIn(derived.filename, self.reload(lost).content)
        self.assertTrue(StoredFile.objects.filter(pk=derived.pk).exists())

    def test_second_run_writes_nothing(self):
        source = self.add_source('lecture.webm')
        page = self.add_page(content=video_html('lecture.webm'))
        self.transcode(source)
        page = self.reload(page)
        page.content = video_html('lecture.webm')
        page.save()
        self.transcode(self.add_source('orphan.webm'))

        first = self.reconciler().run()
        content_after_first = self.reload(page).content
        second = self.reconciler().run()

        self.assertGreater(first.writes, 0)
        self.assertEqual(second.writes, 0)
        self.assertEqual(self.reload(page).content, content_after_first)

    def test_tasks_outside_window_are_not_checked(self):
        source = self.add_source('attachment.webm')
        task_id, derived = self.transcode(source)
        self.clock.advance(hours=1)

        report = self.reconciler().run()

        self.assertEqual(report.orphans_deleted, 0)
        self.assertIsNotNone(self.c.task_store.get(task_id))

    def test_reference_check_disabled(self):
        self.build(refcheck_window=None)
        task_id, _ = self.transcode(self.add_source('attachment.webm'))

        report = self.reconciler().run()

        self.assertEqual(report.orphans_deleted, 0)
        self.assertIsNotNone(self.c.task_store.get(task_id))

    def test_missing_derived_record_is_skipped(self):
        source = self.add_source('lecture.webm')
        self.add_page(content=video_html('lecture.webm'))
        task_id, derived = self.transcode(source)
        StoredFile.objects.filter(pk=derived.pk).delete()

        report = self.reconciler().run()

        self.assertEqual(report.writes, 0)
        self.assertIsNotNone(self.c.task_store.get(task_id))

    def test_error_on_one_task_does_not_stop_others(self):
        broken_source = self.add_source('broken.webm')
        broken_task, _ = self.transcode(broken_source)
        orphan_task, _ = self.transcode(self.add_source('orphan.webm'))
        real_scan = self.c.scanner.scan

        def scan(stored_file):
            if stored_file.id == broken_source.id:
                raise RuntimeError('bad row')
            return real_scan(stored_file)

        with patch.object(self.c.scanner, 'scan', side_effect=scan):
            report = self.reconciler().run()

        self.assertEqual(report.errors, 1)
        self.assertEqual(report.orphans_deleted, 1)
        self.assertIsNotNone(self.c.task_store.get(broken_task))
        self.assertIsNone(self.c.task_store.get(orphan_task))


class MissingSourceTest(ReconcilerTestCase):
    """Completed tasks whose original file was deleted"""

    def test_output_and_references_removed(self):
        source = self.add_source('lecture.webm')
        page = self.add_page(content=video_html('lecture.webm'))
        task_id, derived = self.transcode(source)
        self.assertIn(derived.filename, self.reload(page).content)
        StoredFile.objects.filter(pk=source.pk).delete()
        self.clock.advance(days=1)

        report = self.reconciler().run()

        self.assertEqual(report.missing_source_deleted, 1)
        self.assertIsNone(self.c.task_store.get(task_id))
        self.assertFalse(StoredFile.objects.filter(pk=derived.pk).exists())
        self.assertNotIn(derived.filename, self.reload(page).content)
        self.assertIn('lecture.webm', self.reload(page).content)

    def test_failed_tasks_are_left_alone(self):
        source = self.add_source('lecture.webm')
        task_id = self.c.task_store.insert(source.id)
        self.c.task_store.mark_failed(task_id, 'broken')
        StoredFile.objects.filter(pk=source.pk).delete()

        report = self.reconciler().run()

        self.assertEqual(report.missing_source_deleted, 0)
        self.assertIsNotNone(self.c.task_store.get(task_id))


class UnownedDerivedTest(ReconcilerTestCase):
    """Transcoded files left behind by attempts that never completed"""

    def leftover(self, source, filename='lecture_transcoded_20240501093000.mp4'):
        """Store a converted file the way a crashed attempt would"""
        output = self.tmp / 'crashed' / filename
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b'half finished')
        return self.c.content_store.store_derived(source, output, filename, 'video/mp4')

    def worker(self):
        c = self.c
        return Worker(c.config, c.task_store, c.content_store, c.scanner, c.updater, c.engine, clock=self.clock)

    def test_crashed_attempt_output_removed_before_retry_completes(self):
        source = self.add_source('lecture.webm')
        page = self.add_page(content=video_html('lecture.webm'))
        task_id = self.c.task_store.insert(source.id)
        self.c.task_store.claim(task_id)
        stale = self.leftover(source)
        self.clock.advance(days=1, minutes=1)

        first = self.reconciler().run()
        self.assertEqual(first.recycled, 1)
        self.assertEqual(first.unowned_deleted, 1)
        self.assertEqual(self.worker().run().outcome, OUTCOME_COMPLETED)
        second = self.reconciler().run()
        third = self.reconciler().run()

        self.assertEqual(second.writes, 0)
        self.assertEqual(third.writes, 0)
        task = self.c.task_store.get(task_id)
        self.assertEqual(task.status, TranscodeTask.STATUS_COMPLETED)
        self.assertFalse(StoredFile.objects.filter(pk=stale.pk).exists())
        remaining = StoredFile.objects.filter(filename__contains='_transcoded_')
        self.assertEqual([f.pk for f in remaining], [task.derived_file_id])
        self.assertIn(remaining[0].filename, self.reload(page).content)

    def test_recent_output_is_kept(self):
        """A running attempt may not have recorded its output yet"""
        recent = self.leftover(self.add_source('lecture.webm'))

        report = self.reconciler().run()

        self.assertEqual(report.unowned_deleted, 0)
        self.assertTrue(StoredFile.objects.filter(pk=recent.pk).exists())

    def test_referenced_output_is_kept(self):
        source = self.add_source('lecture.webm')
        used = self.leftover(source)
        self.add_page(content=video_html('lecture.webm', used.filename))
        self.clock.advance(days=2)

        report = self.reconciler().run()

        self.assertEqual(report.unowned_deleted, 0)
        self.assertTrue(StoredFile.objects.filter(pk=used.pk).exists())

    def test_owned_output_is_kept(self):
        _, derived = self.transcode(self.add_source('attachment.webm'))
        self.clock.advance(days=2)

        report = self.reconciler().run()

        self.assertEqual(report.unowned_deleted, 0)
        self.assertTrue(StoredFile.objects.filter(pk=derived.pk).exists())
