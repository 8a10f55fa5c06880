"""Inquiry attachments on the local filesystem, one directory per inquiry."""
import logging
import os
import re
from uuid import uuid4

from adslot.core.config import settings
from adslot.core.errors import NotFoundOrForbidden, ValidationError
from adslot.storage.base import Storage

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    name = _UNSAFE.sub("_", os.path.basename(filename or "")).strip("._")
    return name or "file"


class LocalStorage(Storage):
    def __init__(self, root: str | None = None, max_bytes: int | None = None, allowed_types: set[str] | None = None):
        self.root = root or settings.attachments_root
        self.max_bytes = max_bytes if max_bytes is not None else settings.attachment_max_bytes
        self.allowed_types = allowed_types if allowed_types is not None else settings.allowed_mime_types_set

    def _dir(self, inquiry_id: str) -> str:
        return os.path.join(self.root, safe_filename(inquiry_id))

    def save_attachment(self, inquiry_id: str, filename: str, content: bytes, content_type: str) -> dict:
        content_type = (content_type or "").split(";")[0].strip().lower()
        if content_type not in self.allowed_types:
            raise ValidationError("File type not allowed", content_type=content_type)
        if not content:
            raise ValidationError("File is empty")
        if len(content) > self.max_bytes:
            raise ValidationError("File too large", size=len(content), max_bytes=self.max_bytes)

        directory = self._dir(inquiry_id)
        os.makedirs(directory, exist_ok=True)
        stored_name = f"{uuid4().hex}_{safe_filename(filename)}"
        path = os.path.join(directory, stored_name)
        with open(path, "wb") as f:
            f.write(content)
        logger.info("attachment_saved", extra={"inquiry_id": inquiry_id})
        return {
            "name": filename,
            "stored_name": stored_name,
            "path": path,
            "size": len(content),
            "content_type": content_type,
        }

    def open_attachment(self, inquiry_id: str, stored_name: str) -> bytes:
        path = os.path.join(self._dir(inquiry_id), safe_filename(stored_name))
        if not os.path.isfile(path):
            raise NotFoundOrForbidden("Attachment not found")
        with open(path, "rb") as f:
            return f.read()
