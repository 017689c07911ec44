from .base import FileTransport
from .filesystem import FilesystemTransport, content_revision
from .github import GitHubTransport
