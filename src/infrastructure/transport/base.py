"""
File Transport - Abstraction Layer for Update Writes
=====================================================

Provides a unified interface for reading and writing repository files.
Currently supports the local filesystem and a GitHub repository.

USAGE:
    # Local filesystem (self-hosted)
    transport = FilesystemTransport(Path("/srv/dashboard"))
    snapshot = transport.read_file("lib/foo.ts")
    transport.write_file("lib/foo.ts", "export const foo = 1\\n")

    # GitHub repository (Vercel deployments)
    transport = GitHubTransport(GitHubClient(token), RepoRef("acme", "dashboard"))
    transport.write_file("lib/foo.ts", content, base_revision=snapshot.revision)
"""

from abc import ABC, abstractmethod
from typing import Optional

from src.domain.updates import FileSnapshot, TransportMode


class FileTransport(ABC):
    """
    Abstract base class for update file backends.
    Implement this interface to add new storage backends.
    """

    mode: TransportMode

    @abstractmethod
    def read_file(self, path: str) -> Optional[FileSnapshot]:
        """Read a file. Returns None when it does not exist."""
        ...

    @abstractmethod
    def write_file(self, path: str, content: str, base_revision: Optional[str] = None) -> str:
        """Write a file and return its new revision token."""
        ...

    @abstractmethod
    def delete_file(self, path: str, base_revision: Optional[str] = None):
        """Remove a file. Removing a missing file is not an error."""
        ...
