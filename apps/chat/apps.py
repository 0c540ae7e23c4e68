# apps/chat/apps.py
from django.apps import AppConfig, apps


class ChatConfig(AppConfig):
    """
    Support chat. The app config owns the process's Socket.IO server and the
    RealtimeHub behind it; they are built once the app registry is ready.
    """
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.chat"
    label = "chat"
    verbose_name = "Support chat"

    sio = None
    hub = None

    def ready(self):
        from .socket import create_socket_server

        self.sio, self.hub = create_socket_server()


def get_hub():
    return apps.get_app_config("chat").hub


def get_socket_server():
    return apps.get_app_config("chat").sio
