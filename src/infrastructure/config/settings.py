"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclass for safety and clarity
- Single source of truth for all configurable values

EXTENSIBILITY:
- To pull templates from another host: change GitHubSettings.raw_url
- To add another hosting platform: add a provider-specific settings group
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from pathlib import Path
from functools import lru_cache

# Load .env file if present (development convenience)
from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


@dataclass(frozen=True)
class AppSettings:
    """Where the dashboard lives and how its filesystem behaves."""

    root: Path = field(
        default_factory=lambda: Path(os.getenv("APP_ROOT", os.getcwd())).resolve()
    )
    state_file: str = "vozsmart.config.json"
    backup_dir: str = ".vozsmart-backups"
    scratch_dir: Path = field(
        default_factory=lambda: Path(os.getenv("SCRATCH_DIR", "/tmp"))
    )

    # Vercel and AWS Lambda only allow writes inside the scratch directory
    serverless: bool = field(
        default_factory=lambda: (
            os.getenv("VERCEL") == "1"
            or os.getenv("AWS_LAMBDA_FUNCTION_NAME") is not None
        )
    )

    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    @property
    def state_path(self) -> Path:
        return self.root / self.state_file


@dataclass(frozen=True)
class GitHubSettings:
    """GitHub API access and the repository connected to this deployment."""

    api_url: str = "https://api.github.com"
    raw_url: str = "https://raw.githubusercontent.com"

    token: str = field(default_factory=lambda: os.getenv("GITHUB_TOKEN", ""))

    # Populated by Vercel when the project is linked to a Git repository
    repo_owner: str = field(default_factory=lambda: os.getenv("VERCEL_GIT_REPO_OWNER", ""))
    repo_slug: str = field(default_factory=lambda: os.getenv("VERCEL_GIT_REPO_SLUG", ""))
    repo_branch: str = field(
        default_factory=lambda: os.getenv("VERCEL_GIT_COMMIT_REF", "") or "main"
    )

    timeout_seconds: int = field(default_factory=lambda: _env_int("GITHUB_TIMEOUT_SECONDS", 15))


@dataclass(frozen=True)
class VercelSettings:
    """Vercel API settings used for redeploys and env-var storage."""

    api_url: str = "https://api.vercel.com"

    # VERCEL_API_TOKEN wins over the older VERCEL_TOKEN name
    api_token: str = field(
        default_factory=lambda: os.getenv("VERCEL_API_TOKEN") or os.getenv("VERCEL_TOKEN", "")
    )
    project_id: str = field(default_factory=lambda: os.getenv("VERCEL_PROJECT_ID", ""))
    team_id: Optional[str] = field(default_factory=lambda: os.getenv("VERCEL_TEAM_ID") or None)
    deploy_hook_url: str = field(default_factory=lambda: os.getenv("VERCEL_DEPLOY_HOOK_URL", ""))

    timeout_seconds: int = field(default_factory=lambda: _env_int("VERCEL_TIMEOUT_SECONDS", 8))

    @property
    def has_api_access(self) -> bool:
        return bool(self.api_token and self.project_id)


@dataclass(frozen=True)
class UpdateSettings:
    """Template update flow settings."""

    manifest_path: str = "version.json"

    manifest_timeout_seconds: int = field(
        default_factory=lambda: _env_int("UPDATE_MANIFEST_TIMEOUT_SECONDS", 10)
    )
    file_timeout_seconds: int = field(
        default_factory=lambda: _env_int("UPDATE_FILE_TIMEOUT_SECONDS", 15)
    )

    # A crashed apply leaves its lock row behind; after this it is considered stale
    lock_ttl_seconds: int = field(default_factory=lambda: _env_int("UPDATE_LOCK_TTL_SECONDS", 900))

    # How long a stored setting (e.g. the GitHub token) is served from memory
    settings_cache_ttl_seconds: int = field(
        default_factory=lambda: _env_int("SETTINGS_CACHE_TTL_SECONDS", 60)
    )


@dataclass(frozen=True)
class SecuritySettings:
    """Dashboard authentication settings."""

    api_key: str = field(default_factory=lambda: os.getenv("DASHBOARD_API_KEY", ""))
    session_cookie: str = "vozsmart_session"
    session_ttl_hours: int = field(default_factory=lambda: _env_int("SESSION_TTL_HOURS", 24))

    # Optional bootstrap admin, created on startup when both are set
    admin_email: str = field(default_factory=lambda: os.getenv("ADMIN_EMAIL", ""))
    admin_password: str = field(default_factory=lambda: os.getenv("ADMIN_PASSWORD", ""))


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from src.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.github.token)
    """

    # Sub-settings groups
    app: AppSettings = field(default_factory=AppSettings)
    github: GitHubSettings = field(default_factory=GitHubSettings)
    vercel: VercelSettings = field(default_factory=VercelSettings)
    updates: UpdateSettings = field(default_factory=UpdateSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)

    # File paths
    database_file: Path = field(
        default_factory=lambda: Path(os.getenv("DATABASE_FILE", "vozsmart.db"))
    )

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.app.state_path.exists():
            issues.append(
                f"WARNING: {self.app.state_file} not found in {self.app.root}. "
                "Template updates are disabled for this instance."
            )

        if not self.security.api_key and not self.security.admin_email:
            issues.append(
                "WARNING: Neither DASHBOARD_API_KEY nor ADMIN_EMAIL is set. "
                "Nobody will be able to call the update endpoints."
            )

        if self.github.repo_owner and not self.github.token:
            issues.append(
                "WARNING: Repository is connected but GITHUB_TOKEN is not set. "
                "Save a token from the update panel before applying updates."
            )

        if self.app.serverless and not self.github.repo_owner and not self.vercel.has_api_access:
            issues.append(
                "WARNING: Running serverless without a connected repository. "
                "Updates cannot be applied to a read-only filesystem."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
