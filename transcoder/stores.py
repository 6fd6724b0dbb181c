"""
Database-backed stores used by the transcoder jobs.

- TaskStore: the conversion task table, system of record for task state
- ContentStore: stored file records plus the content-addressed blob tree
- DocumentStore: host document tables named by content areas
"""
import hashlib
import shutil
from pathlib import Path

from django.apps import apps
from django.core.cache import cache
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.urls import NoReverseMatch
from django.utils import timezone

from transcoder.exceptions import TaskExists
from transcoder.models import DiscoveryMark, StoredFile, TranscodeTask, generate_nanoid
from transcoder.service.constants import DERIVED_MARKER, HEIC_EXTENSIONS, HEIC_MIMETYPE
from transcoder.service.scanner import Document
from transcoder.service.trace import JobTrace


class TaskStore:
    """
    Conversion task table.

    Every state change is a conditional UPDATE on the current status (and,
    for commits, on the attempt token), so concurrent workers and jobs never
    both move the same task.
    """

    # Attempts to claim before giving up when other workers keep winning
    max_claim_attempts = 5

    def __init__(self, logger=None, clock=timezone.now):
        self.trace = JobTrace(logger, __name__)
        self.clock = clock

    def insert(self, source_file_id, queued_at=None):
        """
        Queue a new task for a source file.

        Returns:
            int: id of the new task

        Raises:
            TaskExists: If a ready or in-progress task already exists for the file
        """
        try:
            with transaction.atomic():
                task = TranscodeTask.objects.create(
                    source_file_id=source_file_id,
                    queued_at=queued_at or self.clock(),
                )
        except IntegrityError as e:
            raise TaskExists(source_file_id) from e
        return task.id

    def get(self, task_id):
        return TranscodeTask.objects.filter(pk=task_id).first()

    def exists_for_source(self, source_file_id):
        """Whether any task, in any status, exists for the file"""
        return TranscodeTask.objects.filter(source_file_id=source_file_id).exists()

    def count_in_progress(self):
        return TranscodeTask.objects.filter(status=TranscodeTask.STATUS_IN_PROGRESS).count()

    def list_by_status(self, status, limit=None):
        tasks = TranscodeTask.objects.filter(status=status).order_by('queued_at', 'id')
        if limit is not None:
            tasks = tasks[:max(limit, 0)]
        return list(tasks)

    def completed_since(self, since):
        """Completed tasks that finished at or after ``since``, oldest queued first"""
        return list(
            TranscodeTask.objects.filter(
                status=TranscodeTask.STATUS_COMPLETED, finished_at__gte=since
            ).order_by('queued_at', 'id')
        )

    def claim(self, task_id):
        """
        Move a specific ready task to in-progress.

        Returns:
            TranscodeTask with a fresh attempt token, or None if the task
            was not ready (already claimed, finished or gone)
        """
        now = self.clock()
        token = generate_nanoid()
        updated = TranscodeTask.objects.filter(
            pk=task_id, status=TranscodeTask.STATUS_READY
        ).update(
            status=TranscodeTask.STATUS_IN_PROGRESS,
            started_at=now,
            attempt_token=token,
            error_message='',
        )
        if updated != 1:
            return None
        return TranscodeTask.objects.get(pk=task_id)

    def is_current(self, task_id, token):
        """Whether the attempt holding ``token`` still owns the in-progress task"""
        return TranscodeTask.objects.filter(
            pk=task_id, status=TranscodeTask.STATUS_IN_PROGRESS, attempt_token=token
        ).exists()

    def claim_next(self):
        """
        Claim the oldest ready task, ordered by (queued_at, id).

        Returns:
            TranscodeTask, or None if no task could be claimed
        """
        for _ in range(self.max_claim_attempts):
            candidate = (
                TranscodeTask.objects.filter(status=TranscodeTask.STATUS_READY)
                .order_by('queued_at', 'id')
                .values_list('id', flat=True)
                .first()
            )
            if candidate is None:
                return None
            task = self.claim(candidate)
            if task is not None:
                return task
            self.trace.debug(f"Lost the race for task {candidate}, trying the next one.", 1)
        return None

    def mark_completed(self, task_id, derived_file_id, token):
        """
        Complete an in-progress task.

        The write only applies while the task still carries ``token``; a run
        whose task was recycled in the meantime cannot complete it.

        Returns:
            bool: True if the task was completed
        """
        updated = TranscodeTask.objects.filter(
            pk=task_id,
            status=TranscodeTask.STATUS_IN_PROGRESS,
            attempt_token=token,
        ).update(
            status=TranscodeTask.STATUS_COMPLETED,
            derived_file_id=derived_file_id,
            finished_at=self.clock(),
        )
        return updated == 1

    def mark_failed(self, task_id, reason='', token=None):
        """
        Permanently fail an active task.

        Returns:
            bool: True if the task was failed
        """
        tasks = TranscodeTask.objects.filter(pk=task_id, status__in=TranscodeTask.ACTIVE_STATUSES)
        if token is not None:
            tasks = tasks.filter(attempt_token=token)
        updated = tasks.update(
            status=TranscodeTask.STATUS_FAILED,
            finished_at=self.clock(),
            error_message=reason,
        )
        return updated == 1

    def recycle_expired(self, older_than, max_retries):
        """
        Recover tasks stuck in progress since before ``older_than``.

        Tasks retried more than ``max_retries`` times become failed; the rest
        go back to ready with their retry count incremented.

        Returns:
            tuple: (recycled, failed) counts
        """
        with transaction.atomic():
            expired = TranscodeTask.objects.filter(
                status=TranscodeTask.STATUS_IN_PROGRESS, started_at__lte=older_than
            )
            failed = expired.filter(retries__gt=max_retries).update(
                status=TranscodeTask.STATUS_FAILED,
                attempt_token='',
                finished_at=self.clock(),
                error_message=f"Expired after {max_retries} retries",
            )
            recycled = expired.filter(retries__lte=max_retries).update(
                status=TranscodeTask.STATUS_READY,
                attempt_token='',
                retries=F('retries') + 1,
            )
        return recycled, failed

    def delete(self, task_id):
        TranscodeTask.objects.filter(pk=task_id).delete()

    def owned_derived_ids(self):
        """Ids of derived files recorded on any task"""
        return set(
            TranscodeTask.objects.filter(derived_file_id__isnull=False).values_list('derived_file_id', flat=True)
        )

    def get_high_water_mark(self, name):
        mark = DiscoveryMark.objects.filter(name=name).first()
        return mark.files_from_time if mark else None

    def set_high_water_mark(self, name, when):
        DiscoveryMark.objects.update_or_create(name=name, defaults={'files_from_time': when})


def sha1_of_file(path, chunk_size=1024 * 1024):
    digest = hashlib.sha1()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()


class ContentStore:
    """
    Content-addressed file store.

    Blobs live at ``<data_root>/filedir/<h[0:2]>/<h[2:4]>/<hash>``; deleted
    blobs are moved to ``<data_root>/trashdir/`` rather than removed.
    """

    def __init__(self, data_root, logger=None, clock=timezone.now):
        self.data_root = Path(data_root)
        self.filedir = self.data_root / 'filedir'
        self.trashdir = self.data_root / 'trashdir'
        self.tempdir = self.data_root / 'temp' / 'transcoder'
        self.trace = JobTrace(logger, __name__)
        self.clock = clock

    def blob_path(self, contenthash):
        return self.filedir / contenthash[0:2] / contenthash[2:4] / contenthash

    def get_file_by_id(self, file_id):
        if file_id is None:
            return None
        return StoredFile.objects.filter(pk=file_id).first()

    def find_file(self, context_id, component, filearea, filename):
        return (
            StoredFile.objects.filter(
                context_id=context_id, component=component, filearea=filearea, filename=filename
            )
            .order_by('id')
            .first()
        )

    def get_physical_path(self, stored_file):
        return self.blob_path(stored_file.contenthash)

    def has_content(self, stored_file):
        return self.get_physical_path(stored_file).is_file()

    def get_file_content(self, stored_file):
        return self.get_physical_path(stored_file).read_bytes()

    def insert_file(self, stored_file):
        """Save a new file record; its blob must already be in place"""
        stored_file.pk = None
        stored_file.pathnamehash = hashlib.sha1(stored_file.content_path.encode('utf-8')).hexdigest()
        stored_file.save(force_insert=True)
        return stored_file.id

    def add_file(self, path, **fields):
        """
        Copy a file into the store and create its record.

        Args:
            path: Path of the file to add
            **fields: StoredFile fields (filename, mimetype, component, ...)

        Returns:
            StoredFile
        """
        path = Path(path)
        contenthash = sha1_of_file(path)
        target = self.blob_path(contenthash)
        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, target)
        fields.setdefault('filename', path.name)
        now = self.clock()
        fields.setdefault('time_created', now)
        fields.setdefault('time_modified', now)
        stored_file = StoredFile(contenthash=contenthash, filesize=target.stat().st_size, **fields)
        self.insert_file(stored_file)
        return stored_file

    def store_derived(self, original, output_path, filename, mimetype):
        """
        Persist a converted file next to its original.

        The new content hash is the sha1 of the output with its first four
        characters replaced by the original's, so the blob lands in the same
        directory as the original.

        Returns:
            StoredFile for the derived file
        """
        output_path = Path(output_path)
        contenthash = original.contenthash[:4] + sha1_of_file(output_path)[4:]
        target = self.blob_path(contenthash)
        self.trace.log(f"Renaming the transcoded file to the contenthash → {contenthash}", 1)
        self.move_physical_blob(output_path, target)

        now = self.clock()
        derived = StoredFile(
            contenthash=contenthash,
            context_id=original.context_id,
            component=original.component,
            filearea=original.filearea,
            item_id=original.item_id,
            filepath=original.filepath,
            filename=filename,
            source=filename,
            mimetype=mimetype,
            filesize=target.stat().st_size,
            time_created=now,
            time_modified=now,
        )
        self.insert_file(derived)
        self.trace.log(f"Added file record {derived.id} for {filename}.", 1)
        return derived

    def move_physical_blob(self, old_path, new_path):
        new_path = Path(new_path)
        new_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(old_path), str(new_path))

    def delete_file(self, stored_file):
        """
        Delete a file record.

        Its blob is moved to the trash unless another record still shares
        the same content hash.
        """
        contenthash = stored_file.contenthash
        StoredFile.objects.filter(pk=stored_file.pk).delete()
        if StoredFile.objects.filter(contenthash=contenthash).exists():
            return
        blob = self.blob_path(contenthash)
        if blob.exists():
            self.move_physical_blob(blob, self.trashdir / contenthash)
            self.trace.log(f"Moved blob {contenthash} to trash.", 2)

    def list_derived_files(self, created_before):
        """Files produced by the transcoder and created at or before ``created_before``"""
        return list(
            StoredFile.objects.filter(
                filename__contains=DERIVED_MARKER, time_created__lte=created_before
            ).order_by('id')
        )

    def find_candidates(self, since, content_areas, mimetypes):
        """
        Files in the content areas' storage locations modified after ``since``.

        Files named *.heic are included when image/heic is a wanted mimetype,
        since those are stored without one.

        Returns:
            list of StoredFile ordered by id
        """
        components = sorted({area.component for area in content_areas})
        if not components or not mimetypes:
            return []
        type_filter = Q(mimetype__in=list(mimetypes))
        if HEIC_MIMETYPE in mimetypes:
            for extension in HEIC_EXTENSIONS:
                type_filter |= Q(filename__endswith=extension)
        return list(
            StoredFile.objects.filter(time_modified__gt=since, component__in=components)
            .filter(type_filter)
            .order_by('id')
        )


class DocumentStore:
    """
    Host documents addressed by model label and column.

    Args:
        cache_key_template: Format string for the render cache key of a scope
    """

    def __init__(self, cache_key_template='content:render:{scope}', logger=None):
        self.cache_key_template = cache_key_template
        self.trace = JobTrace(logger, __name__)

    def _model(self, table):
        return apps.get_model(table)

    def _scope_for(self, table, row):
        return getattr(row, 'cache_scope', None) or f"{table}:{row.pk}"

    def query(self, table, column, needle):
        """Rows of ``table`` whose ``column`` contains ``needle``, as Documents"""
        model = self._model(table)
        rows = model.objects.filter(**{f"{column}__contains": needle}).order_by('pk')
        return [
            Document(
                table=table,
                column=column,
                row_id=row.pk,
                content=getattr(row, column) or '',
                scope_id=self._scope_for(table, row),
            )
            for row in rows
        ]

    def update(self, document):
        self._model(document.table).objects.filter(pk=document.row_id).update(
            **{document.column: document.content}
        )

    def get_document_url(self, table, row_id):
        """Best-effort URL of a document for operator logs"""
        row = self._model(table).objects.filter(pk=row_id).first()
        if row is None or not hasattr(row, 'get_absolute_url'):
            return None
        try:
            return row.get_absolute_url()
        except NoReverseMatch:
            return None

    def invalidate_cache(self, scope_id):
        if scope_id:
            cache.delete(self.cache_key_template.format(scope=scope_id))
