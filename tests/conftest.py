# tests/conftest.py
import pytest
from django.apps import apps as django_apps
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from apps.chat.hub import RealtimeHub
from apps.chat.models import ChatThread
from apps.users.models import User


class RecordingServer:
    """Records what the hub would push through socketio.AsyncServer."""

    def __init__(self):
        self.emitted = []
        self.disconnected = []
        self.unreachable = set()

    async def emit(self, event, data=None, to=None, **kwargs):
        if to in self.unreachable:
            raise ConnectionError(f"{to} is gone")
        self.emitted.append((event, data, to))

    async def disconnect(self, sid, **kwargs):
        self.disconnected.append(sid)

    def events(self, event=None, to=None):
        return [
            (name, data, sid) for name, data, sid in self.emitted
            if (event is None or name == event) and (to is None or sid == to)
        ]

    def clear(self):
        self.emitted.clear()


def token_for(user):
    return str(AccessToken.for_user(user))


@pytest.fixture
def server():
    return RecordingServer()


@pytest.fixture
def hub(server, monkeypatch):
    """A fresh hub, also installed as the one the HTTP views use."""
    fresh = RealtimeHub(server)
    monkeypatch.setattr(django_apps.get_app_config("chat"), "hub", fresh)
    return fresh


@pytest.fixture
def make_user(db):
    def _make(username, user_type=User.CUSTOMER, **extra):
        return User.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password="s3cret-pass",
            user_type=user_type,
            **extra,
        )
    return _make


@pytest.fixture
def customer(make_user):
    return make_user("alice", full_name="Alice Nguyen")


@pytest.fixture
def other_customer(make_user):
    return make_user("bob", full_name="Bob Tran")


@pytest.fixture
def admin_user(make_user):
    return make_user("support", user_type=User.ADMIN, full_name="Support Desk")


@pytest.fixture
def thread(customer):
    return ChatThread.objects.create(customer=customer)


@pytest.fixture
def client_for():
    def _client(user):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token_for(user)}")
        return client
    return _client


@pytest.fixture
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path / "media"
    settings.CHAT = {**settings.CHAT, "ATTACHMENT_BACKEND": "local"}
    return settings.MEDIA_ROOT
