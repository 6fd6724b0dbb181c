"""
Document rewriter.

Adds and removes <source> references to converted files inside a document's
markup. Both operations are pure: they take a Document and return a new
one, leaving persistence to the caller.
"""
import posixpath
from dataclasses import dataclass, field, replace
from urllib.parse import unquote

from transcoder.service.constants import DERIVED_MARKER
from transcoder.service.markup import SoupMarkupEngine


@dataclass
class RewriteResult:
    """Outcome of rewriting one document"""
    document: object
    changed: bool
    added: list = field(default_factory=list)
    removed: list = field(default_factory=list)


class DocumentRewriter:
    """
    Rewrites media sources in document markup.

    Args:
        engine: MarkupEngine used to parse and edit the markup
        source_url_prefix: Prefix placed before file names in src attributes
        marker: Substring identifying files produced by the transcoder
    """

    def __init__(self, engine=None, source_url_prefix='@@PLUGINFILE@@/', marker=DERIVED_MARKER):
        self.engine = engine or SoupMarkupEngine()
        self.source_url_prefix = source_url_prefix
        self.marker = marker

    def source_for(self, filename):
        return f"{self.source_url_prefix}{filename}"

    def filename_from_source(self, src):
        """
        Extract the file name a src attribute points at.

        Example:
            >>> DocumentRewriter().filename_from_source('@@PLUGINFILE@@/sub/My%20clip.webm?time=1')
            'My clip.webm'
        """
        if self.source_url_prefix and src.startswith(self.source_url_prefix):
            src = src[len(self.source_url_prefix):]
        src = src.split('?', 1)[0].split('#', 1)[0]
        return posixpath.basename(unquote(src))

    def _references(self, sources, filename):
        return any(self.filename_from_source(src) == filename for src in sources)

    def rewrite(self, document, original_filename, derived_filename, media_kind, derived_mimetype=None):
        """
        Point media elements that play the original file at the derived file too.

        For every <media_kind> element with a source naming the original file,
        stale sources carrying the derived-file marker are removed and a new
        source for the derived file is added after the original source.
        Elements that already hold exactly the derived source are left alone.

        Args:
            document: Document whose ``content`` holds the markup
            original_filename: Name of the source file
            derived_filename: Name of the converted file
            media_kind: Element name to look for ('video' or 'audio')
            derived_mimetype: Optional type attribute for the new source

        Returns:
            RewriteResult; ``removed`` lists the file names of dropped stale sources
        """
        parsed = self.engine.parse(document.content)
        changed = False
        added = []
        removed = []

        for element in self.engine.find_media_elements(parsed, media_kind):
            sources = self.engine.find_media_sources(element)
            if not self._references(sources, original_filename):
                continue

            derived_sources = [s for s in sources if self.marker in self.filename_from_source(s)]
            current = [s for s in derived_sources if self.filename_from_source(s) == derived_filename]
            if len(derived_sources) == 1 and current:
                continue

            for src in derived_sources:
                self.engine.remove_source(element, src)
                name = self.filename_from_source(src)
                if name != derived_filename and name not in removed:
                    removed.append(name)

            original_src = next(
                s for s in self.engine.find_media_sources(element)
                if self.filename_from_source(s) == original_filename
            )
            new_src = self.source_for(derived_filename)
            self.engine.insert_source(parsed, element, new_src, after=original_src, mimetype=derived_mimetype)
            added.append(new_src)
            changed = True

        if not changed:
            return RewriteResult(document=document, changed=False)

        updated = replace(document, content=self.engine.serialize(parsed))
        return RewriteResult(document=updated, changed=True, added=added, removed=removed)

    def remove_reference(self, document, derived_filename):
        """
        Remove every source pointing at a derived file.

        Returns:
            RewriteResult with the updated document
        """
        parsed = self.engine.parse(document.content)
        removed = []

        for tag in ('video', 'audio'):
            for element in self.engine.find_media_elements(parsed, tag):
                for src in self.engine.find_media_sources(element):
                    if self.filename_from_source(src) != derived_filename:
                        continue
                    if self.engine.remove_source(element, src):
                        removed.append(src)

        if not removed:
            return RewriteResult(document=document, changed=False)

        updated = replace(document, content=self.engine.serialize(parsed))
        return RewriteResult(document=updated, changed=True, removed=removed)
