"""
Proposal document storage.

The workflow engine only needs "store / delete / exists" on named blobs.
DocumentStorage is that interface; LocalDocumentStorage keeps the blobs
under UPLOAD_DIR on the local filesystem.

Rules:
  - Size and type are checked before anything is written.
  - Refs are opaque file names, never paths; callers must not join them.
  - Deleting an absent ref is a no-op.
"""

from __future__ import annotations

import logging
import os
import secrets
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from werkzeug.utils import secure_filename

from pkm_portal.core.exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)

_DEFAULT_MAX_BYTES = int(2.5 * 1024 * 1024)
_DEFAULT_EXTENSIONS = frozenset({"pdf", "doc", "docx"})


class DocumentStorage(ABC):
    """Store / retrieve / delete named blobs."""

    @abstractmethod
    def store(self, data: bytes, name_hint: str, *, prefix: str = "") -> str:
        """Persist ``data`` and return its ref. Rejects on size/type first."""

    @abstractmethod
    def delete(self, ref: str) -> None:
        """Remove the blob behind ``ref``; absent refs are ignored."""

    @abstractmethod
    def exists(self, ref: str) -> bool:
        """True if a blob is stored under ``ref``."""


class LocalDocumentStorage(DocumentStorage):
    """Filesystem-backed storage: ``proposal_{prefix}_{timestamp}_{token}.{ext}``."""

    def __init__(
        self,
        upload_dir: str,
        *,
        max_bytes: int = _DEFAULT_MAX_BYTES,
        allowed_extensions=_DEFAULT_EXTENSIONS,
    ) -> None:
        self.upload_dir = upload_dir
        self.max_bytes = max_bytes
        self.allowed_extensions = frozenset(e.lower().lstrip(".") for e in allowed_extensions)

    def validate(self, data: bytes, name_hint: str) -> str:
        """Return the normalised extension or raise ValidationError."""
        if not data:
            raise ValidationError("Uploaded file is empty", details={"file": "empty"})
        if len(data) > self.max_bytes:
            limit_mb = self.max_bytes / (1024 * 1024)
            raise ValidationError(
                f"File size exceeds maximum limit of {limit_mb:.1f} MB",
                details={"file": f"max {self.max_bytes} bytes"},
            )
        _, ext = os.path.splitext(name_hint or "")
        ext = ext.lower().lstrip(".")
        if ext not in self.allowed_extensions:
            allowed = ", ".join(sorted(self.allowed_extensions))
            raise ValidationError(
                f"Invalid file extension: {ext or '(none)'}. Allowed: {allowed}",
                details={"file": f"extension must be one of {allowed}"},
            )
        return ext

    def _path(self, ref: str) -> str:
        safe = secure_filename(ref or "")
        if not safe or safe != ref:
            raise StorageError(f"Invalid document ref: {ref!r}")
        return os.path.join(self.upload_dir, safe)

    def store(self, data: bytes, name_hint: str, *, prefix: str = "") -> str:
        ext = self.validate(data, name_hint)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        stem = secure_filename(f"proposal_{prefix}_{stamp}_{secrets.token_hex(4)}")
        ref = f"{stem}.{ext}"
        try:
            os.makedirs(self.upload_dir, exist_ok=True)
            with open(self._path(ref), "xb") as fh:
                fh.write(data)
        except OSError as exc:
            logger.error("Failed to store document ref=%s: %s", ref, exc)
            raise StorageError(f"Failed to save file: {exc}") from exc
        logger.info("Stored document ref=%s bytes=%d", ref, len(data))
        return ref

    def delete(self, ref: str) -> None:
        if not ref:
            return
        path = self._path(ref)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Failed to delete file: {exc}") from exc
        logger.info("Deleted document ref=%s", ref)

    def exists(self, ref: str) -> bool:
        if not ref:
            return False
        try:
            return os.path.isfile(self._path(ref))
        except StorageError:
            return False
