"""
Media Handler
Best-effort persistence of inbound media (images, video, audio, documents, stickers).

Files are written to <MEDIA_DIR>/<session_id>/<message id><ext>. Any failure
is logged and reported as None; it never interrupts event handling.
"""

import logging
import mimetypes
import os
from typing import Any, Dict, Optional

import settings

logger = logging.getLogger(__name__)

# message content key -> fallback extension when the mimetype is unknown
MEDIA_TYPES = {
    "imageMessage": ".jpg",
    "videoMessage": ".mp4",
    "audioMessage": ".ogg",
    "documentMessage": ".bin",
    "stickerMessage": ".webp",
}


def get_media_content(message: Dict[str, Any]):
    """Return (content_key, content) for the first media part of a message, else (None, None)."""
    content = message.get("message") or {}
    for key in MEDIA_TYPES:
        if content.get(key):
            return key, content[key]
    return None, None


def guess_extension(content_key: str, media: Dict[str, Any]) -> str:
    file_name = media.get("fileName")
    if file_name:
        ext = os.path.splitext(file_name)[1]
        if ext:
            return ext

    mimetype = (media.get("mimetype") or "").split(";")[0].strip()
    if mimetype:
        ext = mimetypes.guess_extension(mimetype)
        if ext:
            return ext

    return MEDIA_TYPES[content_key]


class MediaHandler:
    def __init__(self, media_dir: Optional[str] = None):
        self.media_dir = media_dir or settings.MEDIA_DIR

    async def save_media(self, session_id: str, handle, message: Dict[str, Any]) -> Optional[str]:
        """
        Download and store the media of an inbound message.

        Returns the file path, or None when the message has no media or the
        download failed.
        """
        content_key, media = get_media_content(message)
        if content_key is None:
            return None

        message_id = (message.get("key") or {}).get("id")
        if not message_id:
            logger.warning(f"[{session_id}] Media message without id, not saving")
            return None

        try:
            data = await handle.download_media(message)
            if not data:
                logger.warning(f"[{session_id}] Empty media download for {message_id}")
                return None

            session_media_dir = os.path.join(self.media_dir, session_id)
            os.makedirs(session_media_dir, exist_ok=True)
            path = os.path.join(session_media_dir, f"{message_id}{guess_extension(content_key, media)}")
            with open(path, "wb") as f:
                f.write(data)

            logger.info(f"[{session_id}] Saved {content_key} to {path}")
            return path

        except Exception as e:
            logger.error(f"[{session_id}] Failed to save media for {message_id}: {e}", exc_info=True)
            return None
