"""
Applies document rewrites and persists them.

Shared by the worker (after a conversion) and the reconciliation job (when
repairing documents that lost a derived source).
"""
from transcoder.exceptions import AttemptSuperseded
from transcoder.service.trace import JobTrace


class ReferenceUpdater:
    def __init__(self, document_store, content_store, rewriter, logger=None):
        self.document_store = document_store
        self.content_store = content_store
        self.rewriter = rewriter
        self.trace = JobTrace(logger, __name__)

    def _saved(self, document):
        self.document_store.update(document)
        url = self.document_store.get_document_url(document.table, document.row_id)
        if url:
            self.trace.log(f"Updated html for {document.table} entry {document.row_id} → {url}", 2)
        else:
            self.trace.log(f"Updated html for {document.table} entry {document.row_id}", 2)
        if document.scope_id:
            self.trace.debug(f"Rebuilding cache for {document.scope_id}", 2)
            self.document_store.invalidate_cache(document.scope_id)

    def add_derived_source(self, original, derived, media_kind, references, guard=None, task_id=None):
        """
        Add a source for the derived file to every referencing document.

        Stale sources from earlier conversions of the same original are
        removed, and their file records deleted from the store.

        Args:
            original: StoredFile that was converted
            derived: StoredFile produced by the conversion
            media_kind: Media element to rewrite ('video' or 'audio')
            references: Iterable of Reference to documents mentioning the original
            guard: Optional callable checked before each document write;
                a false result raises AttemptSuperseded
            task_id: Task reported in AttemptSuperseded

        Returns:
            int: number of documents written
        """
        written = 0
        for reference in references:
            result = self.rewriter.rewrite(
                reference.document,
                original.filename,
                derived.filename,
                media_kind,
                derived_mimetype=derived.mimetype,
            )
            if not result.changed:
                continue

            if guard is not None and not guard():
                raise AttemptSuperseded(task_id)

            self.trace.log(
                f"Adding a new source to the {media_kind} element → {derived.filename}", 2
            )
            self._saved(result.document)
            written += 1

            for stale_name in result.removed:
                self.trace.log(f"Removing an existing transcoded source → {stale_name}", 2)
                stale = self.content_store.find_file(
                    original.context_id, original.component, original.filearea, stale_name
                )
                if stale is not None and stale.id != derived.id:
                    self.content_store.delete_file(stale)
        return written

    def remove_derived_source(self, derived, references):
        """
        Remove the derived file's sources from every referencing document.

        Returns:
            int: number of documents written
        """
        written = 0
        for reference in references:
            result = self.rewriter.remove_reference(reference.document, derived.filename)
            if not result.changed:
                continue
            self.trace.log(f"Removing transcoded source {derived.filename}", 2)
            self._saved(result.document)
            written += 1
        return written
