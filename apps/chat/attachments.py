# apps/chat/attachments.py
"""
Image uploads for the support chat.

The upload itself is out-of-band (multipart HTTP), but the resulting message
is created by ``RealtimeHub.post_message`` like any text message, so it gets
exactly one broadcast and one unread increment.
"""
import asyncio
import logging
import os
import uuid
from typing import NamedTuple

import cloudinary.uploader
from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from cloudinary.exceptions import Error as CloudinaryError
from django.core.files.storage import default_storage

from .conf import chat_setting
from .exceptions import ChatError, StorageFailure, ValidationFailure

logger = logging.getLogger(__name__)

EXTENSIONS = {
    'image/jpeg': {'.jpg', '.jpeg'},
    'image/png': {'.png'},
    'image/gif': {'.gif'},
    'image/webp': {'.webp'},
}


class StoredAsset(NamedTuple):
    url: str
    name: str
    backend: str


def file_extension(upload):
    return os.path.splitext(getattr(upload, 'name', '') or '')[1].lower()


class AttachmentHandler:
    def __init__(self, hub, backend=None):
        self.hub = hub
        self.backend = backend or chat_setting('ATTACHMENT_BACKEND')

    # ========================
    # VALIDATION
    # ========================
    def validate(self, upload):
        if upload is None or not getattr(upload, 'name', ''):
            raise ValidationFailure("Image file required")

        content_type = (getattr(upload, 'content_type', '') or '').lower()
        allowed = chat_setting('ALLOWED_IMAGE_TYPES')
        if content_type not in allowed:
            logger.warning("Upload rejected: content type %s", content_type or "missing")
            raise ValidationFailure(f"File type not allowed. Allowed types: {', '.join(allowed)}")

        if file_extension(upload) not in EXTENSIONS.get(content_type, set()):
            logger.warning("Upload rejected: extension of %s does not match %s", upload.name, content_type)
            raise ValidationFailure("File extension does not match its type")

        size = upload.size or 0
        if size == 0:
            raise ValidationFailure("Empty file")
        max_size = chat_setting('MAX_ATTACHMENT_SIZE')
        if size > max_size:
            logger.warning("Upload rejected: %s bytes over limit %s", size, max_size)
            raise ValidationFailure(f"File too large. Maximum size: {max_size} bytes")

    # ========================
    # STORAGE
    # ========================
    def store(self, upload):
        folder = chat_setting('ATTACHMENT_FOLDER')
        name = f"{uuid.uuid4().hex}{file_extension(upload)}"

        if self.backend == 'cloudinary':
            result = cloudinary.uploader.upload(
                upload,
                folder=folder,
                public_id=os.path.splitext(name)[0],
                resource_type='image',
            )
            return StoredAsset(result['secure_url'], result['public_id'], 'cloudinary')

        saved = default_storage.save(f"{folder}/{name}", upload)
        return StoredAsset(default_storage.url(saved), saved, 'local')

    def discard(self, asset):
        try:
            if asset.backend == 'cloudinary':
                cloudinary.uploader.destroy(asset.name, resource_type='image')
            else:
                default_storage.delete(asset.name)
        except (OSError, CloudinaryError):
            logger.warning("Could not discard orphaned asset %s", asset.name, exc_info=True)

    def _discard_late_asset(self, storing):
        # store() finished after the upload had already timed out
        if storing.cancelled() or storing.exception() is not None:
            return
        asset = storing.result()
        logger.info("Discarding asset %s stored after timeout", asset.name)
        asyncio.get_running_loop().run_in_executor(None, self.discard, asset)

    # ========================
    # UPLOAD → MESSAGE
    # ========================
    async def handle(self, identity, thread_id, upload, client_message_id=None):
        """
        Validate, authorize, store the asset and post the image message.

        Every rejection happens before a message exists; if posting fails
        after the asset was stored, the asset is removed again.
        """
        self.validate(upload)
        await database_sync_to_async(self.hub.registry.get_authorized_thread)(identity, thread_id)

        storing = asyncio.ensure_future(sync_to_async(self.store, thread_sensitive=False)(upload))
        try:
            asset = await asyncio.wait_for(asyncio.shield(storing), timeout=chat_setting('UPLOAD_TIMEOUT'))
        except asyncio.TimeoutError as e:
            logger.warning("Upload to thread %s timed out", thread_id)
            storing.add_done_callback(self._discard_late_asset)
            raise StorageFailure("Upload timed out") from e
        except (OSError, CloudinaryError, KeyError) as e:
            logger.exception("Upload to thread %s failed", thread_id)
            raise StorageFailure("Upload failed") from e

        try:
            message = await self.hub.post_message(
                identity,
                thread_id,
                image_url=asset.url,
                client_message_id=client_message_id,
            )
        except ChatError:
            await sync_to_async(self.discard, thread_sensitive=False)(asset)
            raise

        if message.image_url != asset.url:
            # retried upload answered with the stored message
            await sync_to_async(self.discard, thread_sensitive=False)(asset)
        return message
