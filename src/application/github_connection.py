"""
GitHub Connection - Which Repository Backs This Deployment
===========================================================

Answers two questions for the update flow:
- Is this deployment connected to a GitHub repository? (remote mode)
- Which token may write to it?

Repository lookup order: VERCEL_GIT_* environment variables, then the Vercel
project API. Token lookup order: GITHUB_TOKEN, then the token saved from the
dashboard (settings table, read through the SettingsCache).
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from src.domain.updates import RepoRef, UpdateError
from src.infrastructure.config import GitHubSettings
from src.infrastructure.github import GitHubClient, TokenValidation
from src.infrastructure.persistence import SettingsCache
from src.infrastructure.vercel import VercelClient

logger = logging.getLogger(__name__)

TOKEN_SETTING_KEY = "github_token"
ACCEPTED_TOKEN_PREFIXES = ("ghp_", "github_pat_")


@dataclass
class ConnectionStatus:
    connected: bool
    repo: Optional[RepoRef] = None
    token_valid: Optional[bool] = None
    error: Optional[str] = None


class GitHubConnection:
    """
    Resolves the repository and token used by remote-mode updates.

    Usage:
        connection = GitHubConnection(settings.github, cache, vercel_client)
        repo = connection.resolve_repo()
        if repo:
            client = connection.client(connection.get_token())
    """

    def __init__(
        self,
        settings: GitHubSettings,
        cache: SettingsCache,
        vercel: Optional[VercelClient] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings
        self._cache = cache
        self._vercel = vercel
        self._session = session

    def resolve_repo(self) -> Optional[RepoRef]:
        """Repository linked to this deployment, or None for filesystem mode."""
        if self._settings.repo_owner and self._settings.repo_slug:
            return RepoRef(
                owner=self._settings.repo_owner,
                repo=self._settings.repo_slug,
                branch=self._settings.repo_branch or "main",
            )

        if self._vercel is None:
            return None

        try:
            return self._vercel.get_project_git_repo()
        except UpdateError as e:
            logger.error(f"Could not read the linked repository from Vercel: {e.message}")
            return None

    def get_token(self) -> Optional[str]:
        if self._settings.token:
            return self._settings.token
        return self._cache.get(TOKEN_SETTING_KEY) or None

    def client(self, token: str) -> GitHubClient:
        return GitHubClient(
            token=token,
            api_url=self._settings.api_url,
            timeout=self._settings.timeout_seconds,
            session=self._session,
        )

    def validate_token(self, token: str) -> TokenValidation:
        return self.client(token).validate_token()

    def save_token(self, token: str):
        """Store a dashboard-supplied token for later applies."""
        self._cache.set(TOKEN_SETTING_KEY, token)
        logger.info("GitHub token saved to settings")

    def status(self) -> ConnectionStatus:
        """Connection state shown on the update panel."""
        repo = self.resolve_repo()
        if repo is None:
            return ConnectionStatus(
                connected=False,
                error="GitHub is not connected to this deployment. Link the repository in the Vercel project settings.",
            )

        token = self.get_token()
        if not token:
            return ConnectionStatus(
                connected=True,
                repo=repo,
                token_valid=False,
                error="GitHub token not configured. Set GITHUB_TOKEN or save a token from the update panel.",
            )

        validation = self.validate_token(token)
        if not validation.ok:
            return ConnectionStatus(
                connected=True,
                repo=repo,
                token_valid=False,
                error=validation.error or "GitHub token is invalid or expired",
            )

        return ConnectionStatus(connected=True, repo=repo, token_valid=True)
