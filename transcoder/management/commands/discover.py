"""
Django management command to find new media files and queue them.

Dispatches queued tasks to the Huey consumer unless cron transcoding is
disabled or --no-dispatch is given.
"""
from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from transcoder.operations import run_discovery
from transcoder.tasks import dispatch_transcode


class Command(BaseCommand):
    help = 'Find video and audio files and queue them for transcoding'

    def add_arguments(self, parser):
        parser.add_argument(
            '--no-dispatch',
            action='store_true',
            help='Queue tasks without handing them to the Huey consumer'
        )

    def handle(self, *args, **options):
        dispatch = None if options['no_dispatch'] else dispatch_transcode
        try:
            report = run_discovery(dispatch=dispatch)
        except ImproperlyConfigured as e:
            raise CommandError(f"Error → Missing required settings: {e}")

        self.stdout.write(self.style.SUCCESS(
            f"✓ {report.queued} queued ({report.unreferenced} unreferenced), "
            f"{report.dispatched} dispatched"
        ))
        if report.errors:
            self.stdout.write(self.style.WARNING(f"{report.errors} file(s) could not be queued"))
