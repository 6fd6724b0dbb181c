"""
Discovery job: finds new convertible files and queues tasks for them.
"""
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone

from django.utils import timezone

from transcoder.exceptions import TaskExists
from transcoder.models import TranscodeTask
from transcoder.service.constants import is_derived_filename
from transcoder.service.scanner import non_empty
from transcoder.service.trace import JobTrace

MARK_NAME = 'files'

EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)


@dataclass
class DiscoveryReport:
    candidates: int = 0
    queued: int = 0
    unreferenced: int = 0
    dispatched: int = 0
    errors: int = 0


class Discovery:
    """
    Scans the file store for convertible files.

    Args:
        config: TranscoderConfig
        task_store: TaskStore
        content_store: ContentStore
        scanner: ReferenceScanner
        dispatch: Optional callable(task_id) that hands a task to a worker
        logger: Optional logger exposing log(level, message)
    """

    def __init__(self, config, task_store, content_store, scanner, dispatch=None,
                 logger=None, clock=timezone.now):
        self.config = config
        self.task_store = task_store
        self.content_store = content_store
        self.scanner = scanner
        self.dispatch = dispatch
        self.trace = JobTrace(logger, __name__)
        self.clock = clock

    def run(self):
        report = DiscoveryReport()
        self.trace.start("Starting crawler task.")

        files_from = self.task_store.get_high_water_mark(MARK_NAME) or EPOCH
        since = files_from - self.config.discovery_lookback
        self.trace.log(f"Looking for files modified after {since.isoformat()}.", 1)

        # Advance the mark before scanning so a crash mid-scan never skips files
        self.task_store.set_high_water_mark(MARK_NAME, self.clock())

        candidates = self.content_store.find_candidates(
            since, self.config.content_areas, self.config.mimetypes
        )
        for stored_file in candidates:
            try:
                self._consider(stored_file, report)
            except Exception as e:
                report.errors += 1
                self.trace.exception(f"Could not queue file {stored_file.id}: {e}", 1)

        if self.config.disable_cron:
            self.trace.log("Cron transcoding disabled; leaving queued tasks for the external driver.", 1)
        elif self.dispatch is not None:
            self._dispatch(report)

        self.trace.finish(
            f"Crawler task finished. {report.queued} queued, {report.dispatched} dispatched."
        )
        return report

    def _consider(self, stored_file, report):
        if is_derived_filename(stored_file.filename):
            return
        # Skip if a task for this file has already been created
        if self.task_store.exists_for_source(stored_file.id):
            return

        report.candidates += 1
        self.trace.log(f"Candidate file found → {stored_file.id} ({stored_file.filename})", 1)
        self.trace.log(f"Searching for content references to {stored_file.filename}", 2)
        found = non_empty(self.scanner.scan(stored_file))
        if not found:
            report.unreferenced += 1
            self.trace.log(
                "File was not referenced in any content but transcoding in case used in attachments.", 2
            )
        else:
            self.trace.log("Content references found. Queuing file for transcoding.", 2)

        try:
            task_id = self.task_store.insert(stored_file.id, queued_at=self.clock())
        except TaskExists:
            self.trace.log(f"File {stored_file.id} was queued by another run.", 2)
            return
        report.queued += 1
        self.trace.debug(f"Queued task {task_id}.", 2)

    def _dispatch(self, report):
        limit = self.config.concurrency_limit
        in_flight = self.task_store.count_in_progress()
        slots = limit - in_flight
        if slots <= 0:
            self.trace.log(
                f"Concurrency limit reached. {in_flight} transcoding task(s) currently in progress.", 1
            )
            return
        for task in self.task_store.list_by_status(TranscodeTask.STATUS_READY, limit=slots):
            self.trace.log(f"Dispatching transcode task {task.id}.", 1)
            self.dispatch(task.id)
            report.dispatched += 1
