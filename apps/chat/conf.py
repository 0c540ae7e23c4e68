# apps/chat/conf.py
from django.conf import settings

DEFAULTS = {
    "AUTH_TIMEOUT": 10.0,
    "UPLOAD_TIMEOUT": 30.0,
    "MAX_ATTACHMENT_SIZE": 5 * 1024 * 1024,
    "ALLOWED_IMAGE_TYPES": ["image/jpeg", "image/png", "image/gif", "image/webp"],
    "ATTACHMENT_BACKEND": "local",
    "ATTACHMENT_FOLDER": "chat",
    "MAX_MESSAGE_LENGTH": 2000,
    "ADMIN_PAGE_SIZE": 10,
    "MESSAGE_PAGE_SIZE": 50,
    "IMAGE_PREVIEW_TEXT": "[image]",
}


def chat_setting(name):
    """Read a CHAT setting at call time, falling back to the packaged default."""
    return getattr(settings, "CHAT", {}).get(name, DEFAULTS[name])
