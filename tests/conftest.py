"""Shared fakes for the update flow tests."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from src.domain.updates import CommitRef, RemoteManifest, TransportError
from src.infrastructure.github import FileCommit, GitHubAPIError, RemoteFile
from src.infrastructure.persistence import init_database

FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


# ── HTTP fakes ─────────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, text: Optional[str] = None, reason: str = ""):
        self.status_code = status_code
        self._json = json_data
        self.reason = reason
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: Optional[Dict[str, str]]
    params: Optional[Dict[str, Any]]
    json: Any
    timeout: Any


class FakeSession:
    """
    Stand-in for requests.Session.

    Routes are keyed by (method, url). A route may be a FakeResponse, an
    exception instance to raise, or a callable taking the RecordedCall.
    Unknown routes answer 404.
    """

    def __init__(self):
        self.routes: Dict[tuple, Any] = {}
        self.calls: List[RecordedCall] = []

    def add(self, method: str, url: str, response):
        self.routes[(method, url)] = response

    def request(self, method, url, headers=None, params=None, json=None, timeout=None, **kwargs):
        call = RecordedCall(method, url, headers, params, json, timeout)
        self.calls.append(call)
        route = self.routes.get((method, url))
        if route is None:
            return FakeResponse(404, {"message": "Not Found"}, reason="Not Found")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return route(call)

    def calls_to(self, method: str, url: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method and c.url == url]


# ── Update flow fakes ──────────────────────────────────────────────

class FakeFetcher:
    """Template source serving an in-memory manifest and files."""

    def __init__(self, manifest=None, files: Optional[Dict[str, str]] = None, errors: Optional[Dict[str, Exception]] = None):
        self.manifest = manifest
        self.files = dict(files or {})
        self.errors = dict(errors or {})
        self.manifest_fetches = 0
        self.requested: List[str] = []

    def fetch_manifest(self) -> RemoteManifest:
        self.manifest_fetches += 1
        if isinstance(self.manifest, Exception):
            raise self.manifest
        return self.manifest

    def fetch_file(self, path: str) -> str:
        self.requested.append(path)
        if path in self.errors:
            raise self.errors[path]
        if path not in self.files:
            raise TransportError(f"Failed to download {path}: 404 Not Found", path=path, remote_status=404)
        return self.files[path]


class FakeConnection:
    def __init__(self, repo=None, token=None, client=None):
        self.repo = repo
        self.token = token
        self._client = client

    def resolve_repo(self):
        return self.repo

    def get_token(self):
        return self.token

    def client(self, token):
        return self._client


class FakeGitHubClient:
    """
    In-memory repository speaking the GitHubClient interface.

    fail_step names a method that raises GitHubAPIError (422) when called.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None, head: str = "head0", fail_step: Optional[str] = None):
        self.files = dict(files or {})
        self.head = head
        self.fail_step = fail_step
        self.calls: List[str] = []
        self.blobs: Dict[str, str] = {}
        self.trees: List[tuple] = []
        self.commits: List[dict] = []
        self.puts: List[tuple] = []
        self.ref_updates: List[tuple] = []

    def _step(self, step: str, path: Optional[str] = None):
        self.calls.append(step)
        if self.fail_step == step:
            raise GitHubAPIError(step, "422 Unprocessable Entity", path=path, remote_status=422)

    def sha_of(self, path: str) -> str:
        return f"sha-{path}-{len(self.files.get(path, ''))}"

    def get_file(self, repo, path, ref=None):
        self._step("get_file", path)
        if path not in self.files:
            return None
        return RemoteFile(content=self.files[path], sha=self.sha_of(path))

    def put_file(self, repo, path, content, message, sha=None):
        self._step("put_file", path)
        if path in self.files and sha != self.sha_of(path):
            raise GitHubAPIError("file commit", "409 sha does not match", path=path, remote_status=409)
        self.files[path] = content
        self.puts.append((path, sha, message))
        commit = CommitRef(sha=f"put{len(self.puts)}", url=f"https://github.test/commit/put{len(self.puts)}")
        return FileCommit(commit=commit, content_sha=self.sha_of(path))

    def delete_file(self, repo, path, message, sha):
        self._step("delete_file", path)
        if sha != self.sha_of(path):
            raise GitHubAPIError("file delete", "409 sha does not match", path=path, remote_status=409)
        del self.files[path]
        self.puts.append((path, sha, message))
        return CommitRef(sha=f"del{len(self.puts)}", url="")

    def get_branch_head(self, repo):
        self._step("get_branch_head")
        return self.head

    def get_commit_tree(self, repo, commit_sha):
        self._step("get_commit_tree")
        return f"tree-{commit_sha}"

    def create_blob(self, repo, content, path=None):
        self._step("create_blob", path)
        sha = f"blob{len(self.blobs)}"
        self.blobs[sha] = content
        return sha

    def create_tree(self, repo, base_tree, entries):
        self._step("create_tree")
        self.trees.append((base_tree, list(entries)))
        return f"tree{len(self.trees)}"

    def create_commit(self, repo, message, tree_sha, parents):
        self._step("create_commit")
        self.commits.append({"message": message, "tree": tree_sha, "parents": parents})
        return CommitRef(sha="newcommit", url="https://github.test/commit/newcommit")

    def update_branch(self, repo, commit_sha, force=False):
        self._step("update_branch")
        self.ref_updates.append((commit_sha, force))
        base_tree, entries = self.trees[-1]
        for entry in entries:
            self.files[entry.path] = self.blobs[entry.sha]
        self.head = commit_sha


# ── Helpers ────────────────────────────────────────────────────────

def state_document(version: str = "1.0.0", protected=None, **extra) -> dict:
    data = {
        "clientName": "Acme Dental",
        "coreVersion": version,
        "lastUpdate": "2025-12-01T10:00:00.000Z",
        "templateRepo": "vozsmart/template",
        "templateBranch": "main",
        "protectedFiles": list(protected or []),
    }
    data.update(extra)
    return data


def write_state(root: Path, version: str = "1.0.0", protected=None, **extra) -> Path:
    path = Path(root) / "vozsmart.config.json"
    path.write_text(json.dumps(state_document(version, protected, **extra), indent=2), encoding="utf-8")
    return path


def manifest(version: str = "1.1.0", files=None, **extra) -> RemoteManifest:
    return RemoteManifest.from_dict({
        "version": version,
        "changelog": extra.get("changelog", ["Faster booking flow"]),
        "filesToUpdate": list(files or []),
        "requiresMigration": extra.get("requiresMigration", False),
        "breakingChanges": extra.get("breakingChanges", []),
    })


@pytest.fixture
def database(tmp_path):
    return init_database(tmp_path / "test.db")


@pytest.fixture
def fake_session():
    return FakeSession()
