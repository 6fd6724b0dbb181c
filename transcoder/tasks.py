"""
Huey tasks.

- discover_files: periodic; queues new files and dispatches transcode_task
- transcode_task: converts one dispatched task
- reconcile_tasks: periodic; recycles stuck tasks and repairs references

Start the consumer with: python manage.py run_huey
"""
import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from huey import crontab
from huey.contrib.djhuey import db_periodic_task, db_task

from transcoder import operations

logger = logging.getLogger(__name__)


@db_task()
def transcode_task(task_id):
    try:
        result = operations.process_task(task_id)
    except ImproperlyConfigured as e:
        logger.error("Error → Missing required settings: %s", e)
        return None
    return result.outcome


def dispatch_transcode(task_id):
    """Enqueue a transcode for the Huey consumer"""
    transcode_task(task_id)


@db_periodic_task(crontab(minute=settings.TRANSCODER_DISCOVERY_CRON))
def discover_files():
    try:
        report = operations.run_discovery(dispatch=dispatch_transcode)
    except ImproperlyConfigured as e:
        logger.error("Error → Missing required settings: %s", e)
        return None
    return report.queued


@db_periodic_task(crontab(minute=settings.TRANSCODER_RECONCILE_CRON))
def reconcile_tasks():
    try:
        report = operations.run_reconciliation()
    except ImproperlyConfigured as e:
        logger.error("Error → Missing required settings: %s", e)
        return None
    return report.writes
