"""
WSGI config for the Django application.

Serves the REST API and admin only. The realtime gateway (ws/chat/) needs
the ASGI application in asgi.py; a WSGI worker cannot hold websocket
connections.

This file exposes the WSGI callable as a module-level variable named `application`.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
