"""
GitHub Transport - Repository Writes Through the GitHub API
============================================================

Used when the dashboard runs on Vercel: the deployed filesystem is read-only,
so updates are committed to the linked repository and Vercel redeploys.

TWO MODES:
- Per-file (write_file): one contents-API commit per file. The base revision
  (blob sha) is sent as a precondition, so a file changed by someone else
  since it was read makes GitHub reject the write instead of overwriting it.
- Batched (commit_files): one commit for any number of files, built with the
  Git Database API. Each commit triggers a deployment, so this is the mode to
  use whenever more than one file changes.

A batched commit only becomes visible at the final ref move, which is a
fast-forward from the head read in the first step. Any earlier failure, or a
branch that moved in the meantime, leaves the repository untouched.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional

from src.domain.updates import CommitRef, FileSnapshot, RepoRef, TransportError, TransportMode
from src.infrastructure.github import GitHubClient, TreeEntry

from .base import FileTransport

logger = logging.getLogger(__name__)


class GitHubTransport(FileTransport):
    """File transport backed by a GitHub repository branch."""

    mode = TransportMode.GITHUB

    def __init__(self, client: GitHubClient, repo: RepoRef):
        self._client = client
        self.repo = repo
        self.commits: List[CommitRef] = []

    def read_file(self, path: str, ref: Optional[str] = None) -> Optional[FileSnapshot]:
        remote = self._client.get_file(self.repo, path, ref=ref)
        if remote is None:
            return None
        return FileSnapshot(content=remote.content, revision=remote.sha)

    def write_file(
        self,
        path: str,
        content: str,
        base_revision: Optional[str] = None,
        message: Optional[str] = None,
    ) -> str:
        """Per-file commit. Returns the new blob sha."""
        result = self._client.put_file(
            self.repo,
            path,
            content,
            message=message or f"chore: update {path}",
            sha=base_revision,
        )
        self.commits.append(result.commit)
        logger.info(f"Committed {path} to {self.repo.full_name}@{self.repo.branch}: {result.commit.sha[:7]}")
        return result.content_sha

    def delete_file(self, path: str, base_revision: Optional[str] = None, message: Optional[str] = None):
        """
        Per-file delete. Without base_revision the current sha is read first.

        Part of the FileTransport contract. Remote updates only add or
        overwrite files, so apply never calls this.
        """
        if base_revision is None:
            current = self.read_file(path)
            if current is None:
                return
            base_revision = current.revision
        commit = self._client.delete_file(self.repo, path, message=message or f"chore: remove {path}", sha=base_revision)
        self.commits.append(commit)
        logger.info(f"Removed {path} from {self.repo.full_name}@{self.repo.branch}: {commit.sha[:7]}")

    def rewrite_file(self, path: str, rewrite: Callable[[str], str], message: str) -> CommitRef:
        """
        Per-file read-modify-write of an existing file.

        The sha read here is the precondition of the write; a concurrent
        change in between fails the write rather than being overwritten.
        """
        current = self.read_file(path)
        if current is None:
            raise TransportError(f"{path} not found in {self.repo.full_name}", path=path)
        self.write_file(path, rewrite(current.content), base_revision=current.revision, message=message)
        return self.commits[-1]

    def commit_files(
        self,
        files: Mapping[str, str],
        message: str,
        rewrite_path: Optional[str] = None,
        rewrite: Optional[Callable[[str], str]] = None,
    ) -> CommitRef:
        """
        Batched commit of every file in one tree.

        Args:
            files: path -> new content, in commit order.
            message: Commit message.
            rewrite_path: Optional existing file to read at the same head and
                transform with rewrite (used for the update-state record).
        """
        repo = self.repo
        head = self._client.get_branch_head(repo)
        base_tree = self._client.get_commit_tree(repo, head)

        contents: Dict[str, str] = dict(files)
        if rewrite_path is not None and rewrite is not None:
            current = self._client.get_file(repo, rewrite_path, ref=head)
            if current is None:
                raise TransportError(
                    f"{rewrite_path} not found in {repo.full_name} at {head[:7]}", path=rewrite_path
                )
            contents[rewrite_path] = rewrite(current.content)

        entries = []
        for path, content in contents.items():
            blob_sha = self._client.create_blob(repo, content, path=path)
            entries.append(TreeEntry(path=path, sha=blob_sha))

        tree_sha = self._client.create_tree(repo, base_tree, entries)
        commit = self._client.create_commit(repo, message, tree_sha, parents=[head])
        self._client.update_branch(repo, commit.sha, force=False)

        self.commits.append(commit)
        logger.info(
            f"Committed {len(entries)} file(s) to {repo.full_name}@{repo.branch} in one commit: {commit.sha[:7]}"
        )
        return commit
