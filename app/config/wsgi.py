"""
WSGI config for the chat service.

Only the REST API is served over WSGI; WebSocket traffic requires the ASGI
application in config.asgi.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
