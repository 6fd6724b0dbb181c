"""
Reconciliation job: the consistency repair pass.

Content is edited while conversions run, and nothing coordinates the two. A
page saved with stale markup after its conversion finished loses the new
source, and content deleted after conversion leaves orphaned files behind.
This job runs on a slower cadence than discovery and repairs both. Running
it again without intervening changes writes nothing.
"""
from dataclasses import dataclass

from django.utils import timezone

from transcoder.models import TranscodeTask
from transcoder.service.constants import media_tag_for
from transcoder.service.scanner import missing_references, non_empty
from transcoder.service.trace import JobTrace


@dataclass
class ReconcileReport:
    recycled: int = 0
    failed: int = 0
    orphans_deleted: int = 0
    references_restored: int = 0
    missing_source_deleted: int = 0
    unowned_deleted: int = 0
    errors: int = 0

    @property
    def writes(self):
        return (
            self.recycled
            + self.failed
            + self.orphans_deleted
            + self.references_restored
            + self.missing_source_deleted
            + self.unowned_deleted
        )


class Reconciler:
    def __init__(self, config, task_store, content_store, scanner, updater,
                 logger=None, clock=timezone.now):
        self.config = config
        self.task_store = task_store
        self.content_store = content_store
        self.scanner = scanner
        self.updater = updater
        self.trace = JobTrace(logger, __name__)
        self.clock = clock

    def run(self):
        report = ReconcileReport()
        self.trace.start("Starting checker task.")

        self.recycle_expired(report)
        if self.config.refcheck_window:
            self.check_references(report)
        self.clean_missing_sources(report)
        self.clean_unowned_derived(report)

        self.trace.finish(
            f"Checker task finished. {report.recycled} recycled, {report.failed} failed, "
            f"{report.orphans_deleted} orphans deleted, {report.references_restored} references restored, "
            f"{report.missing_source_deleted} removed with missing source, "
            f"{report.unowned_deleted} unowned transcoded files deleted."
        )
        return report

    def recycle_expired(self, report):
        expiry = self.clock() - self.config.process_expiry
        self.trace.log(
            f"Recycling in-progress tasks started before {expiry.isoformat()} "
            f"(up to {self.config.max_retries} retries).",
            1,
        )
        recycled, failed = self.task_store.recycle_expired(expiry, self.config.max_retries)
        report.recycled += recycled
        report.failed += failed

    def check_references(self, report):
        """
        Repair recently completed tasks.

        If neither the original nor the derived file is referenced anywhere,
        the derived file and the task are deleted. Otherwise documents that
        reference the original but lost the derived source get it back.
        """
        since = self.clock() - self.config.refcheck_window
        self.trace.log(
            f"Checking that references to transcoded files still exist for tasks completed since {since.isoformat()}.",
            1,
        )
        for task in self.task_store.completed_since(since):
            try:
                self._check_task(task, report)
            except Exception as e:
                report.errors += 1
                self.trace.exception(f"Could not check task {task.id}: {e}", 2)

    def _check_task(self, task, report):
        original = self.content_store.get_file_by_id(task.source_file_id)
        if original is None:
            return
        derived = self.content_store.get_file_by_id(task.derived_file_id)
        if derived is None:
            self.trace.warning(f"Task {task.id}: derived file record {task.derived_file_id} is missing.", 2)
            return
        self.trace.debug(f"File `{original.filename}` found. Checking for references.", 2)

        original_refs = non_empty(self.scanner.scan(original))
        derived_refs = non_empty(self.scanner.scan(derived))

        if not original_refs and not derived_refs:
            self.trace.log(
                "Deleting transcoded files as neither the original file nor the transcoded files "
                "were referenced in any content.",
                2,
            )
            self._delete(task, derived)
            report.orphans_deleted += 1
            return

        missing = missing_references(original_refs, derived_refs)
        if missing:
            rows = [ref.document.row_id for ref in missing]
            self.trace.log(
                f"Transcoded file {derived.id} was missing in entries {rows}, adding back in.", 2
            )
            report.references_restored += self.updater.add_derived_source(
                original, derived, media_tag_for(original.mimetype), missing
            )

    def clean_missing_sources(self, report):
        """Delete derived files and tasks whose original file is gone"""
        for task in self.task_store.list_by_status(TranscodeTask.STATUS_COMPLETED):
            try:
                if self.content_store.get_file_by_id(task.source_file_id) is not None:
                    continue
                self.trace.log(
                    f"Deleting transcoded files of task {task.id} as the original file was not found.", 2
                )
                derived = self.content_store.get_file_by_id(task.derived_file_id)
                if derived is not None:
                    references = [
                        ref
                        for refs in non_empty(self.scanner.scan(derived)).values()
                        for ref in refs.values()
                    ]
                    self.updater.remove_derived_source(derived, references)
                self._delete(task, derived)
                report.missing_source_deleted += 1
            except Exception as e:
                report.errors += 1
                self.trace.exception(f"Could not clean up task {task.id}: {e}", 2)

    def _delete(self, task, derived):
        if derived is not None:
            self.content_store.delete_file(derived)
        self.task_store.delete(task.id)

    def clean_unowned_derived(self, report):
        """
        Delete transcoded files that no task owns.

        An attempt that stored its output and then stalled or lost its claim
        leaves a file that no task points at. Files younger than the
        processing expiry may still belong to a running attempt, and files
        that documents reference are kept.
        """
        cutoff = self.clock() - self.config.process_expiry
        owned = self.task_store.owned_derived_ids()
        for stored in self.content_store.list_derived_files(cutoff):
            if stored.id in owned:
                continue
            try:
                if non_empty(self.scanner.scan(stored)):
                    self.trace.debug(f"Unowned transcoded file {stored.id} is still referenced; keeping it.", 2)
                    continue
                self.trace.log(
                    f"Deleting transcoded file {stored.id} ({stored.filename}) as no task owns it.", 2
                )
                self.content_store.delete_file(stored)
                report.unowned_deleted += 1
            except Exception as e:
                report.errors += 1
                self.trace.exception(f"Could not clean up transcoded file {stored.id}: {e}", 2)
