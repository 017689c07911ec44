"""
Update Service Builder - Composition Root for the Update Flow
=============================================================

Builds the orchestrator and its collaborators from Settings. The web app
calls this once at startup and owns the resulting objects (including the
settings cache), so nothing here is module-level state.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from src.domain.updates import TemplateSource
from src.infrastructure.config import Settings
from src.infrastructure.github import TemplateFetcher
from src.infrastructure.persistence import Database, LocalStateStore, SettingsCache
from src.infrastructure.transport import FilesystemTransport
from src.infrastructure.vercel import VercelClient

from .github_connection import GitHubConnection
from .redeploy import RedeployTrigger
from .update_orchestrator import UpdateOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class UpdateServices:
    orchestrator: UpdateOrchestrator
    connection: GitHubConnection
    settings_cache: SettingsCache
    redeployer: RedeployTrigger
    vercel: Optional[VercelClient] = None


def build_update_services(
    settings: Settings,
    database: Database,
    session: Optional[requests.Session] = None,
) -> UpdateServices:
    """Wire the update flow for this deployment."""
    session = session or requests.Session()
    cache = SettingsCache(database, ttl_seconds=settings.updates.settings_cache_ttl_seconds)

    vercel = None
    if settings.vercel.has_api_access:
        vercel = VercelClient(
            token=settings.vercel.api_token,
            project_id=settings.vercel.project_id,
            team_id=settings.vercel.team_id,
            api_url=settings.vercel.api_url,
            timeout=settings.vercel.timeout_seconds,
            session=session,
        )

    connection = GitHubConnection(settings.github, cache, vercel=vercel, session=session)
    redeployer = RedeployTrigger(
        vercel=vercel,
        deploy_hook_url=settings.vercel.deploy_hook_url,
        timeout=settings.vercel.timeout_seconds,
        session=session,
    )

    def fetcher_factory(source: TemplateSource) -> TemplateFetcher:
        return TemplateFetcher(
            source,
            raw_url=settings.github.raw_url,
            manifest_path=settings.updates.manifest_path,
            manifest_timeout=settings.updates.manifest_timeout_seconds,
            file_timeout=settings.updates.file_timeout_seconds,
            session=session,
        )

    orchestrator = UpdateOrchestrator(
        state_store=LocalStateStore(settings.app.state_path),
        fetcher_factory=fetcher_factory,
        filesystem=FilesystemTransport(settings.app.root, serverless=settings.app.serverless),
        connection=connection,
        locks=database,
        redeployer=redeployer,
        backup_dir=settings.app.backup_dir,
        scratch_dir=settings.app.scratch_dir,
        lock_ttl_seconds=settings.updates.lock_ttl_seconds,
    )

    logger.info(
        f"Update flow ready (root={settings.app.root}, serverless={settings.app.serverless}, "
        f"vercel_api={'yes' if vercel else 'no'})"
    )
    return UpdateServices(
        orchestrator=orchestrator,
        connection=connection,
        settings_cache=cache,
        redeployer=redeployer,
        vercel=vercel,
    )
