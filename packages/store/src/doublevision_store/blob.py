"""Blob storage for uploaded photo bytes.

The workflow only needs "bytes in, public URL out"; storage lifecycle is
owned by the backend. LocalBlobStore writes into a directory that a static
file server exposes under ``public_base_url``.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class BaseBlobStore(ABC):
    @abstractmethod
    def put(self, name: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``name`` and return its public URL."""


class LocalBlobStore(BaseBlobStore):
    """Writes blobs below ``upload_dir``; ``name`` may contain sub-directories."""

    def __init__(self, upload_dir: str = "uploads", public_base_url: str = "http://localhost:8000/uploads"):
        self._root = Path(upload_dir)
        self._base_url = public_base_url.rstrip("/")

    def put(self, name: str, data: bytes, content_type: str) -> str:
        target = (self._root / name).resolve()
        root = self._root.resolve()
        if root not in target.parents:
            raise ValueError(f"Blob name escapes the upload directory: {name!r}")
        os.makedirs(target.parent, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Stored %d bytes (%s) at %s", len(data), content_type, target)
        return f"{self._base_url}/{target.relative_to(root).as_posix()}"
