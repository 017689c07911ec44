"""
Update Orchestrator - Template Check and Apply Use Cases
=========================================================

Ties the update flow together:

    check:  load state -> fetch manifest -> validate paths -> compare versions
    apply:  lock -> load state -> fetch manifest -> compare -> validate paths
            -> pick backend -> write/commit (rollback on failure)
            -> persist new version -> best-effort redeploy -> unlock

ARCHITECTURAL DECISION:
- Check never writes anything; apply re-reads state and manifest instead of
  trusting an earlier check, and re-validates paths right before writing
- A manifest touching protected files is a security error, even when the
  version would otherwise be reported as an available update
- Filesystem writes are paired with in-memory pre-images, so a failed write
  rolls back every file this transaction touched
- GitHub writes land as one commit whose ref move is the last step, so a
  failure leaves nothing to roll back
- Versions are compared by plain inequality; a manifest may move the
  installed version "backwards"
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from src.domain.updates import (
    ApplyResult,
    CheckResult,
    CheckStatus,
    CredentialsMissingError,
    FailedFile,
    LocalUpdateState,
    NoUpdateNeededError,
    Outcome,
    ProtectedFileError,
    RemoteManifest,
    RepoRef,
    TemplateSource,
    TransportMode,
    UnwritableRootError,
    UpdateError,
    UpdateInProgressError,
    UpdateTransaction,
    UpstreamTimeoutError,
    normalize_path,
    validate_file_list,
)
from src.infrastructure.github import GitHubClient, TemplateFetcher
from src.infrastructure.persistence import LocalStateStore, parse_state, serialize_state
from src.infrastructure.transport import FileTransport, FilesystemTransport, GitHubTransport

from .redeploy import RedeployTrigger

logger = logging.getLogger(__name__)

LOCK_NAME = "template-update"


class LockStore(Protocol):
    def acquire_lock(self, name: str, owner: str, ttl_seconds: int = 900) -> bool: ...

    def release_lock(self, name: str, owner: str): ...


class RepositoryConnection(Protocol):
    def resolve_repo(self) -> Optional[RepoRef]: ...

    def get_token(self) -> Optional[str]: ...

    def client(self, token: str) -> GitHubClient: ...


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC timestamp in the lastUpdate format (2026-01-01T12:00:00.000Z)."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class UpdateOrchestrator:
    """
    Check and apply template updates for one deployment.

    USAGE:
        orchestrator = UpdateOrchestrator(
            state_store=LocalStateStore(root / "vozsmart.config.json"),
            fetcher_factory=lambda source: TemplateFetcher(source),
            filesystem=FilesystemTransport(root),
            connection=github_connection,
            locks=database,
        )
        result = orchestrator.check()
        if result.has_update:
            outcome = orchestrator.apply()
    """

    def __init__(
        self,
        state_store: LocalStateStore,
        fetcher_factory: Callable[[TemplateSource], TemplateFetcher],
        filesystem: FilesystemTransport,
        connection: RepositoryConnection,
        locks: LockStore,
        redeployer: Optional[RedeployTrigger] = None,
        backup_dir: str = ".vozsmart-backups",
        scratch_dir: Path = Path("/tmp"),
        lock_ttl_seconds: int = 900,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._state_store = state_store
        self._fetcher_factory = fetcher_factory
        self._filesystem = filesystem
        self._connection = connection
        self._locks = locks
        self._redeployer = redeployer
        self._backup_dir = backup_dir
        self._scratch_dir = Path(scratch_dir)
        self._lock_ttl = lock_ttl_seconds
        self._clock = clock

    @property
    def state_file(self) -> str:
        return self._state_store.path.name

    # ── Check ──────────────────────────────────────────────────────

    def check(self) -> CheckResult:
        """
        Report whether the template publishes a different version.

        Never raises UpdateError and never mutates state: failures come back
        as CHECK_FAILED with the installed version when it is known.
        """
        try:
            state = self._state_store.load()
        except UpdateError as e:
            logger.warning(f"Update check skipped: {e.message}")
            return CheckResult(status=CheckStatus.CHECK_FAILED, error=e)

        current = state.installed_version
        try:
            manifest = self._fetcher_factory(state.template_source).fetch_manifest()
        except UpdateError as e:
            logger.error(f"Update check failed: {e.message}")
            return CheckResult(status=CheckStatus.CHECK_FAILED, current=current, error=e)

        blocked = self._blocked_files(state, manifest)
        if blocked:
            return CheckResult(
                status=CheckStatus.CHECK_FAILED,
                current=current,
                manifest=manifest,
                error=ProtectedFileError(manifest.version, blocked),
            )

        if current != manifest.version:
            logger.info(f"Update available: {current} -> {manifest.version}")
            return CheckResult(status=CheckStatus.UPDATE_AVAILABLE, current=current, manifest=manifest)

        return CheckResult(status=CheckStatus.UP_TO_DATE, current=current, manifest=manifest)

    def _blocked_files(self, state: LocalUpdateState, manifest: RemoteManifest) -> List[str]:
        validation = validate_file_list(manifest.files_to_update, state.protected_patterns)
        if not validation.valid:
            logger.error(
                f"Manifest {manifest.version} references protected files: {', '.join(map(str, validation.blocked))}"
            )
        return validation.blocked

    # ── Apply ──────────────────────────────────────────────────────

    def apply(self) -> ApplyResult:
        """
        Apply the latest template version.

        Raises UpdateError for refusals (not configured, already up to date,
        protected files, missing credentials, lock held, read-only root,
        manifest failures). Write failures come back as ROLLED_BACK or FATAL.
        """
        owner = uuid.uuid4().hex
        if not self._locks.acquire_lock(LOCK_NAME, owner, ttl_seconds=self._lock_ttl):
            raise UpdateInProgressError("Another update is already being applied. Try again when it finishes.")

        try:
            return self._apply()
        finally:
            self._locks.release_lock(LOCK_NAME, owner)

    def _apply(self) -> ApplyResult:
        state = self._state_store.load()
        fetcher = self._fetcher_factory(state.template_source)
        manifest = fetcher.fetch_manifest()

        if state.installed_version == manifest.version:
            raise NoUpdateNeededError(manifest.version)
        if manifest.version < state.installed_version:
            logger.warning(
                f"Manifest version {manifest.version} sorts before installed {state.installed_version}; applying anyway"
            )

        blocked = self._blocked_files(state, manifest)
        if blocked:
            raise ProtectedFileError(manifest.version, blocked)

        planned: List[str] = []
        for raw in manifest.files_to_update:
            path = normalize_path(raw)
            if path is not None and path not in planned:
                planned.append(path)

        transaction = UpdateTransaction(target_version=manifest.version, planned_files=planned)
        transport = self._resolve_transport()
        logger.info(
            f"Applying update {state.installed_version} -> {manifest.version} "
            f"({len(planned)} files, {transport.mode.value} mode)"
        )

        if isinstance(transport, GitHubTransport):
            result = self._apply_remote(transaction, fetcher, transport)
        else:
            result = self._apply_filesystem(state, transaction, fetcher)

        transaction.outcome = result.outcome
        if result.changed and self._redeployer is not None:
            result.redeploy_triggered = self._redeployer.trigger()
        return result

    def _resolve_transport(self) -> FileTransport:
        """GitHub when the deployment is linked to a repository, else the local disk."""
        repo = self._connection.resolve_repo()
        if repo is None:
            return self._filesystem

        token = self._connection.get_token()
        if not token:
            raise CredentialsMissingError(
                f"Deployment is linked to {repo.full_name} but no GitHub token is configured. "
                "Save a token from the update panel."
            )
        return GitHubTransport(self._connection.client(token), repo)

    # ── Filesystem mode ────────────────────────────────────────────

    def _apply_filesystem(
        self,
        state: LocalUpdateState,
        tx: UpdateTransaction,
        fetcher: TemplateFetcher,
    ) -> ApplyResult:
        fs = self._filesystem
        if not fs.is_writable():
            raise UnwritableRootError(
                "The application root is read-only (serverless runtime), so files cannot be updated "
                "in place. Connect the GitHub repository to apply updates."
            )

        backup_path: Optional[str] = None

        def rolled_back() -> ApplyResult:
            return ApplyResult(
                outcome=Outcome.ROLLED_BACK,
                mode=TransportMode.FILESYSTEM,
                version=tx.target_version,
                backup_path=backup_path,
                failed_files=list(tx.failed_files),
                rollback_failures=list(tx.rollback_failures),
            )

        # Download everything first so a network failure never leaves a half-written tree
        contents: Dict[str, str] = {}
        for path in tx.planned_files:
            try:
                contents[path] = fetcher.fetch_file(path)
            except UpstreamTimeoutError:
                raise
            except UpdateError as e:
                logger.error(f"Download failed for {path}: {e.message}")
                tx.failed_files.append(FailedFile(path=path, error=e.message))
                return rolled_back()

        backup_path = self._take_backups(tx)

        for path in tx.planned_files:
            try:
                fs.write_file(path, contents[path])
            except (UpdateError, OSError) as e:
                message = e.message if isinstance(e, UpdateError) else str(e)
                logger.error(f"Write failed for {path}: {message}")
                tx.failed_files.append(FailedFile(path=path, error=message))
                break
            tx.committed_files.append(path)

        if not tx.failed_files:
            try:
                self._state_store.save(state.bumped(tx.target_version, iso_timestamp(self._clock())))
            except OSError as e:
                logger.error(f"Could not persist {self.state_file}: {e}")
                tx.failed_files.append(FailedFile(path=self.state_file, error=str(e)))

        if tx.failed_files:
            self._rollback(tx)
            return rolled_back()

        logger.info(f"Update {tx.target_version} applied: {len(tx.committed_files)} file(s) written")
        return ApplyResult(
            outcome=Outcome.APPLIED,
            mode=TransportMode.FILESYSTEM,
            version=tx.target_version,
            files_updated=len(tx.committed_files),
            backup_path=backup_path,
        )

    def _take_backups(self, tx: UpdateTransaction) -> Optional[str]:
        """
        Capture the pre-image of every planned file that exists.

        Rollback uses the in-memory copies; the on-disk copy is for operators.
        """
        for path in tx.planned_files:
            data = self._filesystem.read_bytes(path)
            if data is not None:
                tx.backups[path] = data

        stamp = self._clock().strftime("%Y-%m-%d_%H-%M-%S")
        candidates = [
            self._filesystem.root / self._backup_dir / f"backup-core-{stamp}",
            self._scratch_dir / f"vozsmart-backup-{stamp}",
        ]
        for backup_root in candidates:
            try:
                backup_root.mkdir(parents=True, exist_ok=True)
                for path, data in tx.backups.items():
                    target = backup_root / path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(data)
                logger.info(f"Backed up {len(tx.backups)} file(s) to {backup_root}")
                return str(backup_root)
            except OSError as e:
                logger.warning(f"Could not write backup to {backup_root}: {e}")

        logger.warning("No on-disk backup written; rollback relies on in-memory copies")
        return None

    def _rollback(self, tx: UpdateTransaction):
        """
        Restore every file this transaction touched.

        Includes the file whose write failed, since a failed write may have
        truncated it. A failing step is recorded and the rollback continues.
        """
        touched = list(tx.committed_files)
        for failed in tx.failed_files:
            if failed.path in tx.planned_files and failed.path not in touched:
                touched.append(failed.path)

        logger.warning(f"Rolling back {len(touched)} file(s) for update {tx.target_version}")
        for path in reversed(touched):
            try:
                if path in tx.backups:
                    self._filesystem.write_bytes(path, tx.backups[path])
                    logger.info(f"Rollback restored {path}")
                else:
                    self._filesystem.delete_file(path)
                    logger.info(f"Rollback removed new file {path}")
            except (UpdateError, OSError) as e:
                message = e.message if isinstance(e, UpdateError) else str(e)
                logger.error(f"Rollback failed for {path}: {message}")
                tx.rollback_failures.append(FailedFile(path=path, error=message))

    # ── GitHub mode ────────────────────────────────────────────────

    def _apply_remote(
        self,
        tx: UpdateTransaction,
        fetcher: TemplateFetcher,
        transport: GitHubTransport,
    ) -> ApplyResult:
        version = tx.target_version
        timestamp = iso_timestamp(self._clock())

        def bump_state(text: str) -> str:
            remote_state = parse_state(text, source=f"{self.state_file} in {transport.repo.full_name}")
            return serialize_state(remote_state.bumped(version, timestamp))

        try:
            contents = {path: fetcher.fetch_file(path) for path in tx.planned_files}
            if contents:
                commit = transport.commit_files(
                    contents,
                    f"chore: update template core to {version}",
                    rewrite_path=self.state_file,
                    rewrite=bump_state,
                )
            else:
                commit = transport.rewrite_file(
                    self.state_file, bump_state, message=f"chore: set coreVersion to {version}"
                )
        except UpdateError as e:
            logger.error(f"Update {version} could not be committed to {transport.repo.full_name}: {e.message}")
            failed_path = getattr(e, "path", None)
            return ApplyResult(
                outcome=Outcome.FATAL,
                mode=TransportMode.GITHUB,
                version=version,
                failed_files=[FailedFile(path=failed_path, error=e.message)] if failed_path else [],
                error=e,
            )

        tx.committed_files = list(tx.planned_files)
        return ApplyResult(
            outcome=Outcome.APPLIED,
            mode=TransportMode.GITHUB,
            version=version,
            files_updated=len(tx.committed_files),
            commits=[commit],
        )
