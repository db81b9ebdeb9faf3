"""
Content-addressed blob store for attachment bytes.

Blobs are stored by their SHA-256 hash in a two-level directory layout
(first two hex chars as subdirectory).  The hash is the ``storage_id`` held
by attachment records; ``get_url`` turns it into a fetchable URL.

Uploads happen out-of-band: ``generate_upload_url`` issues a single-use,
time-limited URL whose token is redeemed with ``complete_upload``.
"""

from __future__ import annotations

import hashlib
import os
import secrets
import time
from pathlib import Path

from chatrelay.types import AuthorizationError


class BlobStore:
    """
    Parameters
    ----------
    base_dir:
        Root directory for blob storage.  Created with ``0o700`` permissions
        if it does not exist.
    base_url:
        URL prefix under which stored blobs are served.
    upload_ttl_seconds:
        Lifetime of an issued upload URL.
    """

    def __init__(
        self,
        base_dir: str,
        base_url: str = "http://localhost:8080/blobs",
        upload_ttl_seconds: int = 3600,
    ) -> None:
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.base_dir, 0o700)
        self.base_url = base_url.rstrip("/")
        self.upload_ttl_seconds = upload_ttl_seconds
        self._pending_uploads: dict[str, float] = {}

    def _blob_path(self, storage_id: str) -> Path:
        if len(storage_id) != 64 or not all(c in "0123456789abcdef" for c in storage_id):
            raise ValueError(f"Invalid storage id: {storage_id!r}")
        path = (self.base_dir / storage_id[:2] / storage_id).resolve()
        if self.base_dir not in path.parents:
            raise ValueError(f"Path traversal detected: {path}")
        return path

    def put(self, content: bytes) -> str:
        """Store *content* and return its storage id.  Duplicates are reused."""
        sha = hashlib.sha256(content).hexdigest()
        path = self._blob_path(sha)
        if not path.exists():
            path.parent.mkdir(exist_ok=True)
            os.chmod(path.parent, 0o700)
            tmp_path = path.with_suffix(".tmp")
            try:
                tmp_path.write_bytes(content)
                os.chmod(tmp_path, 0o600)
                tmp_path.rename(path)
            except BaseException:
                if tmp_path.exists():
                    tmp_path.unlink()
                raise
        return sha

    def get(self, storage_id: str) -> bytes:
        path = self._blob_path(storage_id)
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {storage_id}")
        return path.read_bytes()

    def exists(self, storage_id: str) -> bool:
        return self._blob_path(storage_id).exists()

    def get_url(self, storage_id: str) -> str | None:
        if not self.exists(storage_id):
            return None
        return f"{self.base_url}/{storage_id}"

    def delete(self, storage_id: str) -> bool:
        """Remove a blob.  Returns ``True`` if it existed."""
        path = self._blob_path(storage_id)
        if not path.exists():
            return False
        path.unlink()
        try:
            path.parent.rmdir()
        except OSError:
            pass
        return True

    # ------------------------------------------------------------------
    # Upload URLs
    # ------------------------------------------------------------------

    def generate_upload_url(self) -> str:
        token = secrets.token_urlsafe(24)
        self._pending_uploads[token] = time.monotonic() + self.upload_ttl_seconds
        return f"{self.base_url}/upload/{token}"

    def complete_upload(self, token: str, content: bytes) -> str:
        """Redeem an upload token.  Returns the new storage id."""
        expires = self._pending_uploads.pop(token, None)
        if expires is None or time.monotonic() > expires:
            raise AuthorizationError("Upload URL is invalid or has expired")
        return self.put(content)
