from django.db import models
from django.db.models import Q
from django.utils import timezone
from nanoid import generate


def generate_nanoid():
    """Generate NanoID with A-Z a-z 0-9 alphabet"""
    alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    return generate(alphabet, size=21)


class StoredFile(models.Model):
    """Metadata record of a blob in the content-addressed file store"""

    contenthash = models.CharField(max_length=40, db_index=True)
    pathnamehash = models.CharField(max_length=40, db_index=True)

    # Storage location
    context_id = models.BigIntegerField(db_index=True)
    component = models.CharField(max_length=100)
    filearea = models.CharField(max_length=50)
    item_id = models.BigIntegerField(default=0)
    filepath = models.CharField(max_length=255, default='/')

    filename = models.CharField(max_length=255)
    mimetype = models.CharField(max_length=100, blank=True)
    filesize = models.BigIntegerField(default=0)
    source = models.TextField(blank=True)

    time_created = models.DateTimeField(default=timezone.now)
    time_modified = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=['component', 'filearea'], name='transcoder__compone_7d1c2e_idx'),
            models.Index(fields=['mimetype'], name='transcoder__mimetyp_3f0a9b_idx'),
        ]

    def __str__(self):
        return f"{self.filename} ({self.id})"

    @property
    def content_path(self):
        """Logical path of the file inside its storage area"""
        return (
            f"/{self.context_id}/{self.component}/{self.filearea}/"
            f"{self.item_id}{self.filepath}{self.filename}"
        )


class TranscodeTask(models.Model):
    """One conversion unit: convert a single source file"""

    STATUS_READY = "READY"
    STATUS_IN_PROGRESS = "IN_PROGRESS"
    STATUS_COMPLETED = "COMPLETED"
    STATUS_FAILED = "FAILED"

    STATUS_CHOICES = [
        (STATUS_READY, "Ready"),
        (STATUS_IN_PROGRESS, "In progress"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    # At most one task per source file may be in one of these
    ACTIVE_STATUSES = (STATUS_READY, STATUS_IN_PROGRESS)

    # Opaque references into the file store; no foreign keys because the
    # source file is owned by the store and may disappear at any time.
    source_file_id = models.BigIntegerField(db_index=True)
    derived_file_id = models.BigIntegerField(null=True, blank=True)

    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default=STATUS_READY, db_index=True
    )
    retries = models.PositiveIntegerField(default=0)

    # Fencing token, reissued on every claim
    attempt_token = models.CharField(max_length=21, blank=True)
    error_message = models.TextField(blank=True)

    # Timestamps
    queued_at = models.DateTimeField(default=timezone.now)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["queued_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["source_file_id"],
                condition=Q(status__in=["READY", "IN_PROGRESS"]),
                name="unique_active_task_per_source",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "queued_at"], name="transcoder__status_1b2f4c_idx"),
            models.Index(fields=["status", "started_at"], name="transcoder__status_8e5d0a_idx"),
            models.Index(fields=["status", "finished_at"], name="transcoder__status_c4a7e1_idx"),
        ]

    def __str__(self):
        return f"Task {self.id} (file {self.source_file_id}, {self.status})"

    @property
    def elapsed_seconds(self):
        if not self.started_at or not self.finished_at:
            return None
        return int((self.finished_at - self.started_at).total_seconds())


class DiscoveryMark(models.Model):
    """High-water mark of the last discovery scan"""

    name = models.CharField(max_length=50, unique=True)
    files_from_time = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name}: {self.files_from_time}"
