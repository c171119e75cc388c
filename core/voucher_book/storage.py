"""
File storage for generated PDFs.

Files are written under a root directory and addressed by a public URL
of the form ``<public_url>/<prefix>/<name>``. Path traversal outside the
root is refused.
"""
import asyncio
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config.logging_config import get_logger

from .exceptions import StorageError
from .models import utcnow

logger = get_logger(__name__)

_UNSAFE_RE = re.compile(r'[<>:"\\|?*\x00-\x1f]')


@dataclass(frozen=True)
class StoredFile:
    url: str
    size: int
    mimetype: str
    path: Path


class FileStorage:
    """Local-disk storage with public URLs."""

    def __init__(self, root_dir, public_url: str):
        self.root_dir = Path(root_dir).resolve()
        self.public_url = public_url.rstrip("/")

    def _safe_path(self, relative: str) -> Path:
        """Resolve *relative* under root_dir.

        Raises:
            StorageError: If the path escapes the storage root.
        """
        if _UNSAFE_RE.search(relative):
            raise StorageError(f"Unsafe storage path: {relative}")
        path = (self.root_dir / relative).resolve()
        if path != self.root_dir and self.root_dir not in path.parents:
            raise StorageError("Access denied: path outside storage directory")
        return path

    def url_for(self, relative: str) -> str:
        return f"{self.public_url}/{relative}"

    def relative_from_url(self, url: str) -> Optional[str]:
        """Map a public URL back to its storage path; None for foreign URLs."""
        if not url.startswith(self.public_url + "/"):
            return None
        return url[len(self.public_url) + 1:]

    async def save_file(
        self,
        content: bytes,
        prefix: str,
        filename: Optional[str] = None,
        mimetype: str = "application/pdf",
    ) -> StoredFile:
        """Write bytes under prefix and return the stored file's public URL."""
        if not content:
            raise StorageError("Refusing to store an empty file")
        if filename is None:
            filename = f"{utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}.pdf"
        relative = f"{prefix.strip('/')}/{filename}"
        path = self._safe_path(relative)

        try:
            await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            raise StorageError(f"Failed to store file {relative}: {e}") from e

        logger.info(f"Stored {relative} ({len(content)} bytes)")
        return StoredFile(url=self.url_for(relative), size=len(content), mimetype=mimetype, path=path)

    @staticmethod
    def _write(path: Path, content: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(content)
        tmp.replace(path)

    async def delete_file(self, url: str) -> bool:
        """Delete a stored file by URL. Returns False when it does not exist."""
        relative = self.relative_from_url(url)
        if relative is None:
            raise StorageError(f"URL is not served by this storage: {url}")
        path = self._safe_path(relative)
        try:
            if not path.exists():
                return False
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            raise StorageError(f"Failed to delete file {relative}: {e}") from e
        logger.info(f"Deleted {relative}")
        return True
