from django.core.cache import cache
from django.http import HttpResponse
from django.shortcuts import get_object_or_404

from content.models import Page


def render_cache_key(scope):
    return f'content:render:{scope}'


def page_view(request, pk):
    """Render a page body, caching the markup per scope"""
    page = get_object_or_404(Page, pk=pk)
    key = render_cache_key(page.cache_scope)
    rendered = cache.get(key)
    if rendered is None:
        rendered = {}
    if page.pk not in rendered:
        rendered[page.pk] = f'<h1>{page.title}</h1>\n{page.intro}\n{page.content}'
        cache.set(key, rendered)
    return HttpResponse(rendered[page.pk])
