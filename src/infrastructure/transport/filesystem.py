"""
Filesystem Transport - Direct File I/O Under the Application Root
==================================================================

Used by self-hosted deployments, where the running code lives in a
writable working tree.

SERVERLESS:
Vercel and AWS Lambda only allow writes under the scratch directory, so
the durable tree cannot be modified. is_writable() reports that instead of
letting an update "succeed" against a filesystem that is thrown away.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from src.domain.updates import FileSnapshot, TransportError, TransportMode

from .base import FileTransport

logger = logging.getLogger(__name__)


def content_revision(data: bytes) -> str:
    """Revision token for filesystem content (SHA-256 hex digest)."""
    return hashlib.sha256(data).hexdigest()


class FilesystemTransport(FileTransport):
    """
    Reads and writes files relative to a fixed root.

    There is no revision concept on disk: base_revision is accepted for
    interface compatibility and ignored, writes always overwrite.
    """

    mode = TransportMode.FILESYSTEM

    def __init__(self, root: Path, serverless: bool = False):
        self.root = Path(root).resolve()
        self._serverless = serverless

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise TransportError(f"{path} resolves outside the application root", path=path)
        return target

    def is_writable(self) -> bool:
        """Whether changes under root survive this process."""
        if self._serverless:
            return False
        return self.root.is_dir() and os.access(self.root, os.W_OK)

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def read_bytes(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)
        if not target.is_file():
            return None
        try:
            return target.read_bytes()
        except OSError as e:
            raise TransportError(f"Failed to read {path}: {e}", path=path) from e

    def read_file(self, path: str) -> Optional[FileSnapshot]:
        data = self.read_bytes(path)
        if data is None:
            return None
        return FileSnapshot(content=data.decode("utf-8", errors="replace"), revision=content_revision(data))

    def write_bytes(self, path: str, data: bytes) -> str:
        """Write raw bytes, creating missing parent directories."""
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise TransportError(f"Failed to write {path}: {e}", path=path) from e
        return content_revision(data)

    def write_file(self, path: str, content: str, base_revision: Optional[str] = None) -> str:
        return self.write_bytes(path, content.encode("utf-8"))

    def delete_file(self, path: str, base_revision: Optional[str] = None):
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise TransportError(f"Failed to delete {path}: {e}", path=path) from e
