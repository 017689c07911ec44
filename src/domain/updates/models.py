"""
Update Models - Records Flowing Through the Update Flow
========================================================

LocalUpdateState is the only durable record; everything else lives for the
duration of one check or apply call.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import UpdateError


@dataclass(frozen=True)
class TemplateSource:
    """Template repository that publishes manifests and files."""
    repository_id: str
    branch: str = "main"


@dataclass
class LocalUpdateState:
    """
    Persisted update-state record (vozsmart.config.json).

    The raw document is kept so that keys this class does not know about
    survive a rewrite untouched.
    """
    installed_version: str
    last_update_at: Optional[str]
    template_source: TemplateSource
    protected_patterns: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalUpdateState":
        """Build from the JSON document. Raises ValueError on a malformed record."""
        if not isinstance(data, dict):
            raise ValueError("state record must be a JSON object")

        version = data.get("coreVersion")
        repo = data.get("templateRepo")
        if not isinstance(version, str) or not version:
            raise ValueError("coreVersion must be a non-empty string")
        if not isinstance(repo, str) or "/" not in repo:
            raise ValueError("templateRepo must look like 'owner/repo'")

        branch = data.get("templateBranch") or "main"
        patterns = data.get("protectedFiles") or []
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ValueError("protectedFiles must be a list of strings")

        last_update = data.get("lastUpdate")
        return cls(
            installed_version=version,
            last_update_at=last_update if isinstance(last_update, str) else None,
            template_source=TemplateSource(repository_id=repo, branch=str(branch)),
            protected_patterns=list(patterns),
            raw=copy.deepcopy(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize back to the JSON document.

        Only coreVersion and lastUpdate are taken from this object; every other
        key comes from the document this record was read from.
        """
        data = copy.deepcopy(self.raw)
        if not data:
            data = {
                "templateRepo": self.template_source.repository_id,
                "templateBranch": self.template_source.branch,
                "protectedFiles": list(self.protected_patterns),
            }
        data["coreVersion"] = self.installed_version
        data["lastUpdate"] = self.last_update_at
        return data

    def bumped(self, version: str, timestamp: str) -> "LocalUpdateState":
        """Copy of this record with a new installed version and update time."""
        return LocalUpdateState(
            installed_version=version,
            last_update_at=timestamp,
            template_source=self.template_source,
            protected_patterns=list(self.protected_patterns),
            raw=copy.deepcopy(self.raw),
        )


@dataclass(frozen=True)
class RemoteManifest:
    """Latest template version published in version.json."""
    version: str
    changelog: List[str] = field(default_factory=list)
    files_to_update: List[Any] = field(default_factory=list)
    requires_migration: bool = False
    breaking_changes: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "RemoteManifest":
        """Build from untrusted JSON. Raises ValueError on a malformed document."""
        if not isinstance(data, dict):
            raise ValueError("manifest must be a JSON object")

        version = data.get("version")
        if not isinstance(version, str) or not version.strip():
            raise ValueError("manifest 'version' must be a non-empty string")

        def _entries(key: str) -> List[Any]:
            value = data.get(key) or []
            if not isinstance(value, list):
                raise ValueError(f"manifest '{key}' must be a list")
            return value

        return cls(
            version=version,
            changelog=[str(item) for item in _entries("changelog")],
            # Entries stay raw so the protection policy blocks non-string paths
            files_to_update=_entries("filesToUpdate"),
            requires_migration=bool(data.get("requiresMigration", False)),
            breaking_changes=[str(item) for item in _entries("breakingChanges")],
        )


@dataclass(frozen=True)
class RepoRef:
    """GitHub repository connected to this deployment."""
    owner: str
    repo: str
    branch: str = "main"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class CommitRef:
    """Commit created in the remote repository."""
    sha: str
    url: str = ""


@dataclass(frozen=True)
class FileSnapshot:
    """File content plus the backend's opaque revision token."""
    content: str
    revision: str


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    blocked: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FailedFile:
    path: str
    error: str


class CheckStatus(Enum):
    """Terminal states of a check call."""
    UP_TO_DATE = "up_to_date"
    UPDATE_AVAILABLE = "update_available"
    CHECK_FAILED = "check_failed"


class Outcome(Enum):
    """Terminal states of an apply call."""
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"
    FATAL = "fatal"


class TransportMode(Enum):
    FILESYSTEM = "filesystem"
    GITHUB = "github"


@dataclass
class CheckResult:
    status: CheckStatus
    current: Optional[str] = None
    manifest: Optional[RemoteManifest] = None
    error: Optional[UpdateError] = None

    @property
    def has_update(self) -> bool:
        return self.status == CheckStatus.UPDATE_AVAILABLE

    @property
    def latest(self) -> Optional[str]:
        return self.manifest.version if self.manifest else None


@dataclass
class UpdateTransaction:
    """
    One apply call, from the first backup to the final state write.

    backups only holds files that existed before the transaction; a planned
    file without a backup entry did not exist and is deleted on rollback.
    """
    target_version: str
    planned_files: List[str]
    backups: Dict[str, bytes] = field(default_factory=dict)
    committed_files: List[str] = field(default_factory=list)
    failed_files: List[FailedFile] = field(default_factory=list)
    rollback_failures: List[FailedFile] = field(default_factory=list)
    outcome: Optional[Outcome] = None


@dataclass
class ApplyResult:
    outcome: Outcome
    mode: TransportMode
    version: str
    files_updated: int = 0
    backup_path: Optional[str] = None
    commits: List[CommitRef] = field(default_factory=list)
    failed_files: List[FailedFile] = field(default_factory=list)
    rollback_failures: List[FailedFile] = field(default_factory=list)
    redeploy_triggered: bool = False
    error: Optional[UpdateError] = None

    @property
    def changed(self) -> bool:
        """True when the deployment now runs different code."""
        return self.outcome == Outcome.APPLIED
