"""
High-level operations used by Huey tasks and management commands.

Each operation loads the configuration once, wires up the components and
runs one job. A configuration error raises ImproperlyConfigured before any
state is touched.
"""
from dataclasses import dataclass

from django.utils import timezone

from transcoder.discovery import Discovery
from transcoder.reconciliation import Reconciler
from transcoder.service.config import load_config
from transcoder.service.engine import FFmpegEngine
from transcoder.service.rewriter import DocumentRewriter
from transcoder.service.scanner import ReferenceScanner
from transcoder.stores import ContentStore, DocumentStore, TaskStore
from transcoder.updater import ReferenceUpdater
from transcoder.worker import Worker


@dataclass
class Components:
    config: object
    task_store: TaskStore
    content_store: ContentStore
    document_store: DocumentStore
    scanner: ReferenceScanner
    rewriter: DocumentRewriter
    updater: ReferenceUpdater
    engine: FFmpegEngine


def build_components(config=None, logger=None, engine=None, clock=timezone.now):
    """
    Wire the transcoder components for one job run.

    Args:
        config: TranscoderConfig (default: loaded from Django settings)
        logger: Optional logger shared by every component
        engine: Transcoding engine (default: FFmpegEngine)
        clock: Callable returning the current time

    Returns:
        Components
    """
    config = config or load_config()
    task_store = TaskStore(logger=logger, clock=clock)
    content_store = ContentStore(config.data_root, logger=logger, clock=clock)
    document_store = DocumentStore(logger=logger)
    scanner = ReferenceScanner(document_store, config.content_areas, logger=logger)
    rewriter = DocumentRewriter(source_url_prefix=config.source_url_prefix)
    updater = ReferenceUpdater(document_store, content_store, rewriter, logger=logger)
    return Components(
        config=config,
        task_store=task_store,
        content_store=content_store,
        document_store=document_store,
        scanner=scanner,
        rewriter=rewriter,
        updater=updater,
        engine=engine or FFmpegEngine(config.engine, logger=logger),
    )


def run_discovery(config=None, dispatch=None, logger=None):
    """
    Queue tasks for new files and dispatch up to the concurrency limit.

    Args:
        dispatch: Optional callable(task_id); without it nothing is dispatched

    Returns:
        DiscoveryReport
    """
    c = build_components(config, logger)
    discovery = Discovery(
        c.config, c.task_store, c.content_store, c.scanner, dispatch=dispatch, logger=logger
    )
    return discovery.run()


def process_task(task_id, config=None, logger=None, engine=None):
    """Run a specific dispatched task. Returns WorkerResult"""
    c = build_components(config, logger, engine)
    worker = Worker(c.config, c.task_store, c.content_store, c.scanner, c.updater, c.engine, logger=logger)
    return worker.run(task_id)


def process_next_task(config=None, logger=None, engine=None):
    """
    Run the oldest ready task, if the concurrency limit allows.

    This is the operation behind ``./manage.py transcode``, meant to be run
    every minute by an external scheduler when cron transcoding is disabled.

    Returns:
        WorkerResult
    """
    c = build_components(config, logger, engine)
    worker = Worker(c.config, c.task_store, c.content_store, c.scanner, c.updater, c.engine, logger=logger)
    return worker.run()


def run_reconciliation(config=None, logger=None):
    """Recycle expired tasks and repair references. Returns ReconcileReport"""
    c = build_components(config, logger)
    reconciler = Reconciler(c.config, c.task_store, c.content_store, c.scanner, c.updater, logger=logger)
    return reconciler.run()
