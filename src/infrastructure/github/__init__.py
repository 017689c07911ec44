from .github_client import (
    FileCommit,
    GitHubAPIError,
    GitHubClient,
    RemoteFile,
    TokenValidation,
    TreeEntry,
)
from .template_source import TemplateFetcher
