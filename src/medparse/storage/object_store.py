"""Content-addressed object storage for page images.

Keys are derived from the source document's content hash, so writing the
same key twice always writes the same bytes. Stores are write-once: a key
that already exists is not rewritten.
"""

import asyncio
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from medparse.config import settings
from medparse.errors import StorageError

KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+\.(png|jpg|jpeg|gif|webp|tiff|bmp|pdf)$")


def validate_key(key: str) -> str:
    """Reject keys that could escape the storage root."""
    if not KEY_PATTERN.match(key):
        raise StorageError(f"Invalid storage key: {key!r}", {"key": key})
    return key


def key_from_url(url_or_key: str) -> str:
    """Extract the storage key from a URL returned by `put`."""
    return url_or_key.rstrip("/").rsplit("/", 1)[-1]


class ObjectStore(ABC):
    """Storage collaborator used to publish page images."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key and return a stable URL."""

    @abstractmethod
    async def get(self, url_or_key: str) -> bytes:
        """Read back bytes previously stored."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether key has already been written."""


class LocalObjectStore(ObjectStore):
    """Stores objects as files under a directory served at `/api/static/uploads`."""

    url_prefix = "/api/static/uploads"

    def __init__(
        self,
        root_dir: Optional[Path] = None,
        public_url: Optional[str] = None,
    ):
        """Initialize store.

        Args:
            root_dir: Directory for stored files (default from settings)
            public_url: Base URL the directory is served from (default from settings)
        """
        self.root_dir = Path(root_dir or settings.upload_dir).resolve()
        self.public_url = (public_url or settings.public_url).rstrip("/")

    def path_for(self, key: str) -> Path:
        return self.root_dir / validate_key(key)

    def url_for(self, key: str) -> str:
        return f"{self.public_url}{self.url_prefix}/{validate_key(key)}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self.path_for(key)
        await asyncio.to_thread(self._write_once, path, data)
        return self.url_for(key)

    async def get(self, url_or_key: str) -> bytes:
        path = self.path_for(key_from_url(url_or_key))
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {path.name}", {"key": path.name}) from e

    async def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def _write_once(self, path: Path, data: bytes) -> None:
        if path.exists():
            return
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a sibling temp file and rename so readers never see a partial file
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=path.suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
