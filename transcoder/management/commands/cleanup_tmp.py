"""
Management command to clean up abandoned transcoder temp directories.

Conversions write into a temporary directory under the data root that is
removed when the conversion finishes. A killed worker leaves it behind.
"""
import shutil
from datetime import timedelta

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from transcoder.service.config import load_config
from transcoder.stores import ContentStore


class Command(BaseCommand):
    help = 'Clean up abandoned temp directories from interrupted conversions'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting'
        )
        parser.add_argument(
            '--max-age',
            type=int,
            default=24 * 60,
            help='Maximum age in minutes before considering a temp directory abandoned (default: 1440)'
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        max_age = timedelta(minutes=options['max_age'])

        try:
            config = load_config()
        except ImproperlyConfigured as e:
            raise CommandError(f"Error → Missing required settings: {e}")

        tempdir = ContentStore(config.data_root).tempdir
        if not tempdir.exists():
            self.stdout.write(self.style.SUCCESS("No temp directories found"))
            return

        now = timezone.now()
        old_dirs = []
        for path in tempdir.iterdir():
            if not path.is_dir():
                continue
            mtime = timezone.datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.get_current_timezone())
            if now - mtime > max_age:
                old_dirs.append(path)

        if not old_dirs:
            self.stdout.write(self.style.SUCCESS(
                f"No temp directories older than {options['max_age']} minutes"
            ))
            return

        for path in old_dirs:
            size = sum(f.stat().st_size for f in path.rglob('*') if f.is_file())
            self.stdout.write(f"{path.name:40} | Size: {size / (1024 * 1024):6.1f} MB")

        if dry_run:
            self.stdout.write(self.style.WARNING(
                f"\nDRY RUN: Would delete {len(old_dirs)} director{'ies' if len(old_dirs) != 1 else 'y'}"
            ))
            return

        deleted_count = 0
        for path in old_dirs:
            try:
                shutil.rmtree(path)
                deleted_count += 1
            except OSError as e:
                self.stdout.write(self.style.ERROR(f"✗ Failed to delete {path.name}: {e}"))

        self.stdout.write(self.style.SUCCESS(
            f"✓ Deleted {deleted_count} of {len(old_dirs)} temp director{'ies' if deleted_count != 1 else 'y'}"
        ))
