import os

import django
import socketio
from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

django.setup()

from apps.chat.apps import get_socket_server  # noqa: E402

django_asgi_app = get_asgi_application()
application = socketio.ASGIApp(get_socket_server(), django_asgi_app)
