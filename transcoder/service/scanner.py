"""
Reference scanner.

Finds the documents in the configured content areas whose text mentions a
stored file by name.
"""
from dataclasses import dataclass

from transcoder.service.trace import JobTrace


@dataclass(frozen=True)
class Document:
    """One column of one row holding document markup"""
    table: str
    column: str
    row_id: int
    content: str
    scope_id: str = None


@dataclass(frozen=True)
class Reference:
    """A document that mentions a file"""
    area: object
    document: Document
    matched_text: str

    @property
    def location(self):
        """(content area, table, column, row id)"""
        return (self.area.key, self.document.table, self.document.column, self.document.row_id)


class ReferenceScanner:
    """
    Searches content areas for references to a file.

    Only areas whose component and filearea match the file's own storage
    location are searched. A file copied into another area gets its own file
    record and is scanned independently.

    Args:
        document_store: Object exposing query(table, column, needle) -> [Document]
        content_areas: ContentArea records to search
        logger: Optional logger exposing log(level, message)
    """

    def __init__(self, document_store, content_areas, logger=None):
        self.document_store = document_store
        self.content_areas = tuple(content_areas)
        self.trace = JobTrace(logger, __name__)

    def scan(self, stored_file):
        """
        Scan for documents mentioning the file's name.

        Returns:
            dict mapping each searched ContentArea to {row_id: Reference};
            areas without matches map to an empty dict
        """
        matches = {}
        for area in self.content_areas:
            if not area.matches(stored_file):
                continue
            self.trace.debug(
                f"Looking for uses of file {stored_file.id} within component {area.component}, "
                f"filearea {area.filearea}, table {area.table}, col {area.column}.",
                2,
            )
            found = {}
            for document in self.document_store.query(area.table, area.column, stored_file.filename):
                found[document.row_id] = Reference(
                    area=area, document=document, matched_text=stored_file.filename
                )
            matches[area] = found
        return matches


def non_empty(matches):
    """Drop areas without references from a scan result"""
    return {area: refs for area, refs in matches.items() if refs}


def missing_references(original_matches, derived_matches):
    """
    References to the original file in documents that lack the derived file.

    Args:
        original_matches: scan result for the original file
        derived_matches: scan result for the derived file

    Returns:
        list of Reference, in area then row order
    """
    missing = []
    for area, refs in original_matches.items():
        have = derived_matches.get(area, {})
        for row_id in sorted(refs):
            if row_id not in have:
                missing.append(refs[row_id])
    return missing
