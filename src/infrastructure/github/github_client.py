"""
GitHub Client - REST API Wrapper for Repository Writes
=======================================================

Thin wrapper over the GitHub REST API endpoints the update flow needs:

- Contents API:     read one file, create/update one file (one commit each)
- Git Database API: refs, commits, blobs, trees (many files, one commit)
- Users API:        token validation

Every call has an explicit timeout. A timeout raises UpstreamTimeoutError;
any other failure raises GitHubAPIError naming the step that failed.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from src.domain.updates import CommitRef, RepoRef, TransportError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
REGULAR_FILE_MODE = "100644"


class GitHubAPIError(TransportError):
    """Raised when a GitHub API call returns an unexpected status."""

    def __init__(self, step: str, message: str, path: Optional[str] = None, remote_status: Optional[int] = None):
        super().__init__(f"GitHub {step} failed: {message}", path=path, remote_status=remote_status)
        self.step = step


@dataclass(frozen=True)
class RemoteFile:
    """File read through the contents API."""
    content: str
    sha: str


@dataclass(frozen=True)
class FileCommit:
    """Result of a contents-API write."""
    commit: CommitRef
    content_sha: str


@dataclass(frozen=True)
class TreeEntry:
    path: str
    sha: str
    mode: str = REGULAR_FILE_MODE
    type: str = "blob"


@dataclass(frozen=True)
class TokenValidation:
    ok: bool
    login: Optional[str] = None
    error: Optional[str] = None


def encode_content(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


def decode_content(encoded: str) -> str:
    return base64.b64decode(encoded).decode("utf-8")


class GitHubClient:
    """
    GitHub REST client bound to one token.

    USAGE:
        client = GitHubClient(token="ghp_...")
        repo = RepoRef("acme", "dashboard", "main")
        head = client.get_branch_head(repo)
    """

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_API_BASE,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    # ── Low level ──────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _request(
        self,
        method: str,
        url: str,
        step: str,
        expected: Sequence[int] = (200,),
        path: Optional[str] = None,
        **kwargs,
    ) -> requests.Response:
        try:
            response = self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"GitHub {step} timed out after {self._timeout}s", url=url) from e
        except requests.RequestException as e:
            raise GitHubAPIError(step, str(e), path=path) from e

        if response.status_code not in expected:
            raise GitHubAPIError(
                step,
                f"{response.status_code} {self._error_message(response)}",
                path=path,
                remote_status=response.status_code,
            )
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.reason or ""
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return response.reason or ""

    def _repo_url(self, repo: RepoRef, suffix: str) -> str:
        return f"{self._api_url}/repos/{repo.owner}/{repo.repo}/{suffix}"

    # ── Contents API ───────────────────────────────────────────────

    def get_file(self, repo: RepoRef, path: str, ref: Optional[str] = None) -> Optional[RemoteFile]:
        """Read one file at a branch or commit. Returns None if it does not exist."""
        url = self._repo_url(repo, f"contents/{quote(path, safe='/')}")
        response = self._request(
            "GET", url, "file read", expected=(200, 404), path=path,
            params={"ref": ref or repo.branch},
        )
        if response.status_code == 404:
            return None

        data = response.json()
        if not isinstance(data, dict) or "content" not in data:
            raise GitHubAPIError("file read", f"{path} is not a regular file", path=path)
        return RemoteFile(content=decode_content(data["content"]), sha=data["sha"])

    def put_file(
        self,
        repo: RepoRef,
        path: str,
        content: str,
        message: str,
        sha: Optional[str] = None,
    ) -> FileCommit:
        """
        Create or update one file as its own commit.

        With sha, GitHub only accepts the write if the current blob still has
        that sha (409 otherwise). Without sha the file must not exist yet.
        """
        body: Dict[str, Any] = {
            "message": message,
            "content": encode_content(content),
            "branch": repo.branch,
        }
        if sha:
            body["sha"] = sha

        url = self._repo_url(repo, f"contents/{quote(path, safe='/')}")
        data = self._request("PUT", url, "file commit", expected=(200, 201), path=path, json=body).json()
        commit = data.get("commit") or {}
        return FileCommit(
            commit=CommitRef(sha=commit.get("sha", ""), url=commit.get("html_url", "")),
            content_sha=(data.get("content") or {}).get("sha", ""),
        )

    def delete_file(self, repo: RepoRef, path: str, message: str, sha: str) -> CommitRef:
        """Delete one file as its own commit. sha is the blob being deleted."""
        url = self._repo_url(repo, f"contents/{quote(path, safe='/')}")
        body = {"message": message, "sha": sha, "branch": repo.branch}
        data = self._request("DELETE", url, "file delete", path=path, json=body).json()
        commit = data.get("commit") or {}
        return CommitRef(sha=commit.get("sha", ""), url=commit.get("html_url", ""))

    # ── Git Database API ───────────────────────────────────────────

    def get_branch_head(self, repo: RepoRef) -> str:
        """SHA of the commit the branch currently points at."""
        url = self._repo_url(repo, f"git/ref/heads/{repo.branch}")
        data = self._request("GET", url, "branch lookup").json()
        return data["object"]["sha"]

    def get_commit_tree(self, repo: RepoRef, commit_sha: str) -> str:
        """SHA of the root tree of a commit."""
        url = self._repo_url(repo, f"git/commits/{commit_sha}")
        data = self._request("GET", url, "tree lookup").json()
        return data["tree"]["sha"]

    def create_blob(self, repo: RepoRef, content: str, path: Optional[str] = None) -> str:
        url = self._repo_url(repo, "git/blobs")
        body = {"content": encode_content(content), "encoding": "base64"}
        data = self._request("POST", url, "blob creation", expected=(201,), path=path, json=body).json()
        return data["sha"]

    def create_tree(self, repo: RepoRef, base_tree: str, entries: List[TreeEntry]) -> str:
        """Layer entries on top of base_tree; unlisted files are inherited."""
        url = self._repo_url(repo, "git/trees")
        body = {
            "base_tree": base_tree,
            "tree": [
                {"path": e.path, "mode": e.mode, "type": e.type, "sha": e.sha}
                for e in entries
            ],
        }
        data = self._request("POST", url, "tree creation", expected=(201,), json=body).json()
        return data["sha"]

    def create_commit(self, repo: RepoRef, message: str, tree_sha: str, parents: List[str]) -> CommitRef:
        url = self._repo_url(repo, "git/commits")
        body = {"message": message, "tree": tree_sha, "parents": parents}
        data = self._request("POST", url, "commit creation", expected=(201,), json=body).json()
        return CommitRef(sha=data["sha"], url=data.get("html_url", ""))

    def update_branch(self, repo: RepoRef, commit_sha: str, force: bool = False):
        """
        Move the branch to commit_sha.

        Without force GitHub rejects anything that is not a fast-forward, so a
        branch that moved since the parent was read fails here (422).
        """
        url = self._repo_url(repo, f"git/refs/heads/{repo.branch}")
        self._request("PATCH", url, "branch update", json={"sha": commit_sha, "force": force})

    # ── Users API ──────────────────────────────────────────────────

    def validate_token(self) -> TokenValidation:
        """Check that the token authenticates against GitHub."""
        try:
            response = self._request("GET", f"{self._api_url}/user", "token validation", expected=(200, 401, 403))
        except UpstreamTimeoutError:
            return TokenValidation(ok=False, error="GitHub did not answer in time")
        except GitHubAPIError as e:
            return TokenValidation(ok=False, error=e.message)

        if response.status_code != 200:
            return TokenValidation(ok=False, error="GitHub token is invalid or expired")

        login = (response.json() or {}).get("login")
        logger.info(f"GitHub token validated for {login}")
        return TokenValidation(ok=True, login=login)
