"""
Django management command to process the next eligible transcode task.

Meant to be run every minute by an external scheduler when cron
transcoding is disabled (TRANSCODER_DISABLE_CRON). Running it with nothing
to do is a normal, successful run.
"""
import json

from django.core.exceptions import ImproperlyConfigured
from django.core.management.base import BaseCommand, CommandError

from transcoder.operations import process_next_task, process_task
from transcoder.worker import OUTCOME_COMPLETED, OUTCOME_FAILED, OUTCOME_STALLED


class Command(BaseCommand):
    help = 'Transcode the next queued video or audio file'

    def add_arguments(self, parser):
        parser.add_argument(
            '--task',
            type=int,
            help='Process this task id instead of the oldest ready task'
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Output result as JSON'
        )

    def handle(self, *args, **options):
        task_id = options['task']
        output_json = options['json']

        try:
            if task_id is not None:
                result = process_task(task_id)
            else:
                result = process_next_task()
        except ImproperlyConfigured as e:
            raise CommandError(f"Error → Missing required settings: {e}")

        if output_json:
            self.stdout.write(json.dumps({
                'outcome': result.outcome,
                'task_id': result.task_id,
                'derived_file_id': result.derived_file_id,
                'message': result.message,
            }, indent=2))
            return

        if result.outcome == OUTCOME_COMPLETED:
            self.stdout.write(self.style.SUCCESS(
                f"✓ Task {result.task_id} completed (file {result.derived_file_id})"
            ))
        elif result.outcome in (OUTCOME_FAILED, OUTCOME_STALLED):
            self.stdout.write(self.style.WARNING(
                f"Task {result.task_id} {result.outcome}: {result.message}"
            ))
        else:
            self.stdout.write(f"Exiting → {result.message or result.outcome}")
