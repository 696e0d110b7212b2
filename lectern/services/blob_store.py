"""
Local blob store for uploaded PDFs.

Files live under ``UPLOAD_DIR`` with UUID names so concurrent uploads never
collide.  The vision analyzer reads them back from here.
"""
from __future__ import annotations

import logging
import os
import uuid
from typing import Optional

import aiofiles
from fastapi import UploadFile

from lectern.config import settings
from lectern.exceptions import FileTooLargeError

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Async file storage rooted at one directory."""

    def __init__(self, root: Optional[str] = None, max_size: Optional[int] = None) -> None:
        self.root = root or settings.UPLOAD_DIR
        self.max_size = max_size or settings.MAX_FILE_SIZE

    def _new_path(self, suffix: str) -> str:
        os.makedirs(self.root, exist_ok=True)
        return os.path.join(self.root, f"{uuid.uuid4().hex}{suffix}")

    async def save_bytes(self, data: bytes, suffix: str = ".pdf") -> str:
        if len(data) > self.max_size:
            raise FileTooLargeError(
                f"File exceeds the {self.max_size // (1024 * 1024)} MB size limit."
            )
        path = self._new_path(suffix)
        async with aiofiles.open(path, "wb") as out:
            await out.write(data)
        return path

    async def read_upload(self, file: UploadFile) -> bytes:
        """Read an upload in 1 MB slices, enforcing the size limit."""
        chunks = []
        size = 0
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            size += len(chunk)
            if size > self.max_size:
                raise FileTooLargeError(
                    f"File exceeds the {self.max_size // (1024 * 1024)} MB size limit."
                )
            chunks.append(chunk)
        logger.info("Received %r (%s bytes)", file.filename, f"{size:,}")
        return b"".join(chunks)

    def delete(self, path: str) -> None:
        """Remove a stored file; logs rather than raises if it is already gone."""
        try:
            os.remove(path)
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)


def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore()
