"""
Template Fetcher - Manifest and File Downloads from the Template Repository
============================================================================

Downloads version.json and template files from raw.githubusercontent.com.

ARCHITECTURAL DECISION:
- Every request defeats caching (no-store headers plus a timestamp query
  parameter) because the raw CDN otherwise serves a stale manifest for minutes
- 404 on the manifest is ManifestUnavailableError, anything else is
  ManifestFetchError, a timeout is UpstreamTimeoutError
"""

import logging
import time
from typing import Callable, Dict, Optional
from urllib.parse import quote

import requests

from src.domain.updates import (
    ManifestFetchError,
    ManifestUnavailableError,
    RemoteManifest,
    TemplateSource,
    TransportError,
    UpstreamTimeoutError,
)

logger = logging.getLogger(__name__)

RAW_GITHUB_BASE = "https://raw.githubusercontent.com"
MANIFEST_PATH = "version.json"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


class TemplateFetcher:
    """
    Read-only access to one template repository branch.

    USAGE:
        fetcher = TemplateFetcher(TemplateSource("vozsmart/template", "main"))
        manifest = fetcher.fetch_manifest()
        content = fetcher.fetch_file("lib/foo.ts")
    """

    def __init__(
        self,
        source: TemplateSource,
        raw_url: str = RAW_GITHUB_BASE,
        manifest_path: str = MANIFEST_PATH,
        manifest_timeout: float = 10,
        file_timeout: float = 15,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.source = source
        self._raw_url = raw_url.rstrip("/")
        self._manifest_path = manifest_path
        self._manifest_timeout = manifest_timeout
        self._file_timeout = file_timeout
        self._session = session or requests.Session()
        self._clock = clock

    def _url(self, path: str) -> str:
        return f"{self._raw_url}/{self.source.repository_id}/{self.source.branch}/{quote(path, safe='/')}"

    def _get(self, url: str, accept: str, timeout: float) -> requests.Response:
        headers: Dict[str, str] = {"Accept": accept, **NO_CACHE_HEADERS}
        params = {"t": str(int(self._clock() * 1000))}
        try:
            return self._session.request("GET", url, headers=headers, params=params, timeout=timeout)
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"Template repository timed out after {timeout}s: {url}", url=url) from e

    def fetch_manifest(self) -> RemoteManifest:
        """Download and validate version.json."""
        url = self._url(self._manifest_path)
        try:
            response = self._get(url, "application/json", self._manifest_timeout)
        except requests.RequestException as e:
            raise ManifestFetchError(f"Failed to fetch {self._manifest_path}: {e}") from e

        if response.status_code == 404:
            raise ManifestUnavailableError(
                f"{self._manifest_path} not found in repository {self.source.repository_id}. "
                "Check that the template repository is configured correctly."
            )
        if not 200 <= response.status_code < 300:
            raise ManifestFetchError(
                f"Failed to fetch {self._manifest_path}: {response.status_code} {response.reason or ''}".rstrip()
            )

        try:
            manifest = RemoteManifest.from_dict(response.json())
        except ValueError as e:
            raise ManifestFetchError(f"Invalid {self._manifest_path}: {e}") from e

        logger.info(
            f"Template {self.source.repository_id}@{self.source.branch} publishes "
            f"{manifest.version} ({len(manifest.files_to_update)} files)"
        )
        return manifest

    def fetch_file(self, path: str) -> str:
        """Download one template file. path must already be normalized."""
        url = self._url(path)
        try:
            response = self._get(url, "text/plain, application/json, */*", self._file_timeout)
        except requests.RequestException as e:
            raise TransportError(f"Failed to download {path}: {e}", path=path) from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Failed to download {path}: {response.status_code} {response.reason or ''}".rstrip(),
                path=path,
                remote_status=response.status_code,
            )
        return response.text
