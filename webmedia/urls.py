"""
URL configuration for the webmedia project.

The transcoder has no web surface of its own; only host content pages are
routed here so converted sources can be linked from operator logs.
"""

from django.urls import path

from content.views import page_view

urlpatterns = [
    path('pages/<int:pk>/', page_view, name='page_detail'),
]
