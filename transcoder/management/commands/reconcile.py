"""
Django management command to clean up transcoder tasks and files.
"""
import json

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from transcoder.operations import run_reconciliation


class Command(BaseCommand):
    help = 'Recycle stuck transcoder tasks and repair references to transcoded files'

    def add_arguments(self, parser):
        parser.add_argument(
            '--json',
            action='store_true',
            help='Output the report as JSON'
        )

    def handle(self, *args, **options):
        try:
            report = run_reconciliation()
        except ImproperlyConfigured as e:
            raise CommandError(f"Error → Missing required settings: {e}")

        if options['json']:
            self.stdout.write(json.dumps({
                'recycled': report.recycled,
                'failed': report.failed,
                'orphans_deleted': report.orphans_deleted,
                'references_restored': report.references_restored,
                'missing_source_deleted': report.missing_source_deleted,
                'unowned_deleted': report.unowned_deleted,
                'errors': report.errors,
            }, indent=2))
            return

        self.stdout.write(f"  Recycled: {report.recycled}")
        self.stdout.write(f"  Failed: {report.failed}")
        self.stdout.write(f"  Orphans deleted: {report.orphans_deleted}")
        self.stdout.write(f"  References restored: {report.references_restored}")
        self.stdout.write(f"  Removed with missing source: {report.missing_source_deleted}")
        self.stdout.write(f"  Unowned transcoded files deleted: {report.unowned_deleted}")
        if report.errors:
            self.stdout.write(self.style.WARNING(f"  Errors: {report.errors}"))
        else:
            self.stdout.write(self.style.SUCCESS("✓ Reconciliation complete"))
