"""
WSGI config for the webmedia project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'webmedia.settings')

application = get_wsgi_application()
