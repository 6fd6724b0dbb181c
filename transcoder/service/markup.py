"""
Markup access for the document rewriter.

The rewriter only needs to find media elements, list their sources and add
or remove <source> children. MarkupEngine names those operations and
SoupMarkupEngine implements them with BeautifulSoup.
"""
from bs4 import BeautifulSoup


class MarkupEngine:
    """Operations the document rewriter needs from a markup implementation"""

    def parse(self, markup):
        raise NotImplementedError

    def serialize(self, document):
        raise NotImplementedError

    def find_media_elements(self, document, tag):
        raise NotImplementedError

    def find_media_sources(self, element):
        """Return the src of every source of the element, primary first"""
        raise NotImplementedError

    def insert_source(self, document, element, src, after=None, mimetype=None):
        raise NotImplementedError

    def remove_source(self, element, src):
        """Remove every <source> with this src; return how many were removed"""
        raise NotImplementedError


class SoupMarkupEngine(MarkupEngine):
    """MarkupEngine backed by BeautifulSoup's html.parser"""

    parser = 'html.parser'

    def parse(self, markup):
        return BeautifulSoup(markup or '', self.parser)

    def serialize(self, document):
        return str(document)

    def find_media_elements(self, document, tag):
        return document.find_all(tag)

    def find_media_sources(self, element):
        sources = []
        if element.get('src'):
            sources.append(element['src'])
        for source_tag in element.find_all('source', src=True):
            sources.append(source_tag['src'])
        return sources

    def insert_source(self, document, element, src, after=None, mimetype=None):
        """
        Add a <source> to a media element.

        If the element carries its own src attribute it is moved into a
        <source> child first, since browsers ignore <source> children while
        the attribute is present.

        Args:
            document: Parsed document the element belongs to
            element: The <video>/<audio> element
            src: Value for the new source's src attribute
            after: src of the source to insert after (default: the last source)
            mimetype: Optional value for the type attribute
        """
        if element.get('src'):
            primary = document.new_tag('source', src=element['src'])
            del element['src']
            element.insert(0, primary)

        attrs = {'src': src}
        if mimetype:
            attrs['type'] = mimetype
        new_source = document.new_tag('source', attrs=attrs)

        existing = element.find_all('source', src=True)
        anchor = None
        if after is not None:
            anchor = next((s for s in existing if s['src'] == after), None)
        if anchor is None and existing:
            anchor = existing[-1]

        if anchor is not None:
            anchor.insert_after(new_source)
        else:
            element.append(new_source)
        return new_source

    def remove_source(self, element, src):
        removed = 0
        for source_tag in element.find_all('source', src=True):
            if source_tag['src'] == src:
                source_tag.decompose()
                removed += 1
        return removed
