from .errors import (
    CredentialsMissingError,
    InvalidStateError,
    ManifestFetchError,
    ManifestUnavailableError,
    NoUpdateNeededError,
    NotConfiguredError,
    ProtectedFileError,
    TransportError,
    UnwritableRootError,
    UpdateError,
    UpdateInProgressError,
    UpstreamTimeoutError,
)
from .models import (
    ApplyResult,
    CheckResult,
    CheckStatus,
    CommitRef,
    FailedFile,
    FileSnapshot,
    LocalUpdateState,
    Outcome,
    RemoteManifest,
    RepoRef,
    TemplateSource,
    TransportMode,
    UpdateTransaction,
    ValidationResult,
)
from .protection import is_protected, normalize_path, validate_file_list
