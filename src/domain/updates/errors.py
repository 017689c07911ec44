"""
Update Errors - Failure Taxonomy for the Template Update Flow
==============================================================

Every failure the update flow can surface is a subclass of UpdateError.
Each class carries the HTTP status the web layer answers with, so routes
never have to guess how to classify an exception.

CATEGORIES:
- Configuration: NotConfiguredError, InvalidStateError, CredentialsMissingError
- Security:      ProtectedFileError (always names the blocked paths)
- Transport:     ManifestUnavailableError, ManifestFetchError,
                 UpstreamTimeoutError, TransportError
- Refusals:      NoUpdateNeededError, UpdateInProgressError, UnwritableRootError
"""

from typing import List, Optional, Sequence


class UpdateError(Exception):
    """Base exception for template update errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotConfiguredError(UpdateError):
    """Raised when the local update-state record does not exist."""

    status_code = 404


class InvalidStateError(UpdateError):
    """Raised when the local update-state record cannot be parsed."""

    status_code = 500


class ManifestUnavailableError(UpdateError):
    """Raised when the template repository has no manifest (HTTP 404)."""

    status_code = 404


class ManifestFetchError(UpdateError):
    """Raised for any other manifest failure (non-2xx, bad JSON, bad shape)."""

    status_code = 500


class UpstreamTimeoutError(UpdateError):
    """Raised when a remote service did not answer within its timeout."""

    status_code = 504

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TransportError(UpdateError):
    """Raised when reading or writing a file through a backend fails."""

    status_code = 502

    def __init__(self, message: str, path: Optional[str] = None, remote_status: Optional[int] = None):
        super().__init__(message)
        self.path = path
        self.remote_status = remote_status


class ProtectedFileError(UpdateError):
    """Raised when the manifest references files that must never be overwritten."""

    status_code = 403

    def __init__(self, version: str, blocked: Sequence[str]):
        self.version = version
        self.blocked: List[str] = list(blocked)
        super().__init__(
            f"Security error: version {version} tries to update protected files: "
            f"{', '.join(map(str, self.blocked))}. Contact support."
        )


class NoUpdateNeededError(UpdateError):
    """Raised when apply is called while already on the latest version."""

    status_code = 400

    def __init__(self, version: str):
        super().__init__(f"Already on the latest version ({version})")
        self.version = version


class CredentialsMissingError(UpdateError):
    """Raised when remote mode is selected but no GitHub token is available."""

    status_code = 401


class UpdateInProgressError(UpdateError):
    """Raised when another apply holds the update lock."""

    status_code = 409


class UnwritableRootError(UpdateError):
    """Raised when filesystem mode cannot modify the application root."""

    status_code = 409
