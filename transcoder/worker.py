"""
Worker: runs one conversion task end to end.

Steps:
1. Claim a task (the oldest ready one, or a specific dispatched one)
2. Re-validate its status so duplicate dispatches do nothing
3. Load the source file
4. Convert it with the transcoding engine
5. Store the output as a new blob next to the original
6. Add a source for the output to every document using the original
7. Mark the task completed

A failure in steps 4-7 leaves the task in progress; the reconciliation job
recycles it once the staleness window has passed. The output of a failed
attempt is deleted unless a document already uses it.

Every write after the conversion is fenced by the attempt token: once the
task has been recycled and claimed again, this attempt stores nothing and
touches no document.
"""
import tempfile
from dataclasses import dataclass

from django.utils import timezone

from transcoder.exceptions import AttemptSuperseded
from transcoder.models import TranscodeTask
from transcoder.service.constants import derived_filename, resolve_target
from transcoder.service.scanner import non_empty
from transcoder.service.trace import JobTrace

# Outcomes
OUTCOME_IDLE = 'idle'
OUTCOME_SKIPPED = 'skipped'
OUTCOME_COMPLETED = 'completed'
OUTCOME_FAILED = 'failed'
OUTCOME_STALLED = 'stalled'
OUTCOME_FENCED = 'fenced'


@dataclass
class WorkerResult:
    outcome: str
    task_id: int = None
    derived_file_id: int = None
    message: str = ''

    @property
    def did_work(self):
        return self.outcome not in (OUTCOME_IDLE, OUTCOME_SKIPPED)


class Worker:
    def __init__(self, config, task_store, content_store, scanner, updater, engine,
                 logger=None, clock=timezone.now):
        self.config = config
        self.task_store = task_store
        self.content_store = content_store
        self.scanner = scanner
        self.updater = updater
        self.engine = engine
        self.trace = JobTrace(logger, __name__)
        self.clock = clock

    def run(self, task_id=None):
        """
        Process one task.

        Args:
            task_id: Task dispatched by the discovery job. When None, the
                oldest ready task is taken, subject to the concurrency limit.

        Returns:
            WorkerResult
        """
        self.trace.start("Starting transcode task.")

        if task_id is None:
            task, result = self._claim_next()
        else:
            task, result = self._claim_dispatched(task_id)
        if task is None:
            self.trace.finish(f"Exiting → {result.message}")
            return result

        try:
            result = self._process(task)
        except Exception as e:
            # Task stays in progress and is recycled by the expiry sweep
            self.trace.exception(f"Task {task.id} failed: {e}", 1)
            result = WorkerResult(OUTCOME_STALLED, task.id, message=str(e))

        self.trace.finish(f"Transcode task {task.id} finished → {result.outcome}")
        return result

    def _claim_next(self):
        limit = self.config.concurrency_limit
        in_flight = self.task_store.count_in_progress()
        if in_flight >= limit:
            return None, WorkerResult(
                OUTCOME_IDLE,
                message=f"{in_flight} transcoding task(s) currently in-progress. Concurrency limit is {limit}.",
            )
        task = self.task_store.claim_next()
        if task is None:
            return None, WorkerResult(OUTCOME_IDLE, message="No tasks to process.")
        return task, None

    def _claim_dispatched(self, task_id):
        task = self.task_store.get(task_id)
        if task is None:
            return None, WorkerResult(
                OUTCOME_SKIPPED, task_id, message=f"Failed to find transcoder task record {task_id}."
            )
        if task.status != TranscodeTask.STATUS_READY:
            return None, WorkerResult(
                OUTCOME_SKIPPED, task_id, message=f"Task {task_id} is already {task.get_status_display().lower()}."
            )
        claimed = self.task_store.claim(task_id)
        if claimed is None:
            return None, WorkerResult(
                OUTCOME_SKIPPED, task_id, message=f"Task {task_id} was claimed by another worker."
            )
        return claimed, None

    def _fail(self, task, reason):
        self.trace.warning(f"Task {task.id} failed permanently → {reason}", 1)
        self.task_store.mark_failed(task.id, reason, token=task.attempt_token)
        return WorkerResult(OUTCOME_FAILED, task.id, message=reason)

    def _process(self, task):
        source = self.content_store.get_file_by_id(task.source_file_id)
        if source is None:
            return self._fail(task, f"Failed to find file record {task.source_file_id}")
        if not self.content_store.has_content(source):
            return self._fail(task, f"Content for file {source.id} ({source.contenthash}) is missing")

        target = resolve_target(source.mimetype)
        if target is None:
            return self._fail(task, f"Unhandled mimetype {source.mimetype}")

        physical_path = self.content_store.get_physical_path(source)
        self.trace.log(f"Transcoding {source.filename} → {physical_path}", 1)

        self.content_store.tempdir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.content_store.tempdir) as tmp_dir:
            output_path = f"{tmp_dir}/{source.contenthash}{target.extension}"
            converted = self.engine.convert(physical_path, output_path, target.kind)
            self.trace.log(
                f"Transcoding finished ({converted.file_size} bytes, "
                f"duration {converted.duration_seconds}s).",
                1,
            )

            if not self._is_current(task):
                return self._fenced(task)

            now = self.clock()
            derived = self.content_store.store_derived(
                source,
                converted.path,
                derived_filename(source.filename, target.extension, now),
                target.mimetype,
            )

        try:
            self.trace.log("Searching for HTML references to update.", 1)
            found = non_empty(self.scanner.scan(source))
            if not found:
                self.trace.log("No content references found; the converted file is available as an attachment.", 1)
            for area, references in found.items():
                self.trace.log(
                    f"Adding transcoded source {derived.id} into {area.table} entries {sorted(references)}", 1
                )
                self.updater.add_derived_source(
                    source,
                    derived,
                    target.tag,
                    references.values(),
                    guard=lambda: self._is_current(task),
                    task_id=task.id,
                )

            completed = self.task_store.mark_completed(task.id, derived.id, task.attempt_token)
        except AttemptSuperseded:
            return self._fenced(task, derived)
        except Exception:
            self._discard_unused(derived)
            raise

        if not completed:
            return self._fenced(task, derived)

        finished = self.task_store.get(task.id)
        elapsed = finished.elapsed_seconds if finished else None
        self.trace.log(f"Task {task.id} completed. Time elapsed → {elapsed} seconds", 1)
        return WorkerResult(OUTCOME_COMPLETED, task.id, derived.id)

    def _is_current(self, task):
        return self.task_store.is_current(task.id, task.attempt_token)

    def _discard_unused(self, derived):
        """Delete this attempt's output unless a document already uses it"""
        if non_empty(self.scanner.scan(derived)):
            self.trace.log(f"Keeping file {derived.id}; documents already reference it.", 1)
            return
        self.trace.log(f"Deleting unused file {derived.id} ({derived.filename}).", 1)
        self.content_store.delete_file(derived)

    def _fenced(self, task, derived=None):
        self.trace.warning(
            f"Task {task.id} was recycled while this attempt ran; its result was not recorded.", 1
        )
        if derived is not None:
            self._discard_unused(derived)
        return WorkerResult(
            OUTCOME_FENCED,
            task.id,
            derived.id if derived is not None else None,
            message="Attempt token no longer current",
        )
