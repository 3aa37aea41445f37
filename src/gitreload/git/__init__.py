"""Git operations for fetching configuration from a remote repository."""

from gitreload.git.operations import (
    GitError,
    checkout_detached,
    clone_repository,
    fetch_ref,
    get_file_at_commit,
    get_head_sha,
    get_remote_sha,
    is_git_repo,
)
from gitreload.git.source import GitRemoteSource, RemoteSource, sanitize_repo_url

__all__ = [
    "GitError",
    "GitRemoteSource",
    "RemoteSource",
    "checkout_detached",
    "clone_repository",
    "fetch_ref",
    "get_file_at_commit",
    "get_head_sha",
    "get_remote_sha",
    "is_git_repo",
    "sanitize_repo_url",
]
