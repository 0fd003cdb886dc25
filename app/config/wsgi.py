"""
WSGI config for the chat service.

The service is served through ASGI (config.asgi) so WebSocket delivery works.
WSGI is kept for management tooling and HTTP-only deployments, where
real-time push is unavailable but the REST API behaves the same.

https://docs.djangoproject.com/en/5.2/howto/deployment/wsgi/
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
