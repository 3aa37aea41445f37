"""Git operations for polling and materializing a remote configuration."""

import asyncio
import contextlib
import os
import re
from pathlib import Path

SHA_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class GitError(Exception):
    """Raised when a git operation fails."""

    pass


async def _run_git_command(
    args: list[str], cwd: Path, timeout: float = 120.0
) -> tuple[str, str, int]:
    """Run a git command and return stdout, stderr, and return code."""
    cmd = ["git"] + args
    # Never block a poll on an interactive credential prompt
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await asyncio.wait_for(
            proc.communicate(), timeout=timeout
        )
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            proc.returncode or 0,
        )
    except TimeoutError as err:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        raise GitError(f"Git command timed out: {' '.join(cmd[:2])}") from err
    except Exception as err:
        raise GitError(f"Failed to run git command: {err}") from err


async def is_git_repo(path: Path) -> bool:
    """Check if the given path is inside a git repository."""
    if not path.is_dir():
        return False
    try:
        stdout, stderr, rc = await _run_git_command(
            ["rev-parse", "--is-inside-work-tree"], path
        )
        return rc == 0 and stdout.strip() == "true"
    except GitError:
        return False


def _pick_ref_sha(ls_remote_output: str, ref: str) -> str | None:
    """Choose the sha for ref from `git ls-remote` output.

    Branches win over tags; annotated tags resolve to their peeled commit.
    """
    refs: dict[str, str] = {}
    for line in ls_remote_output.splitlines():
        parts = line.split("\t", 1)
        if len(parts) == 2 and SHA_PATTERN.match(parts[0]):
            refs[parts[1].strip()] = parts[0]

    if not refs:
        return None

    for candidate in (
        ref,
        f"refs/heads/{ref}",
        f"refs/tags/{ref}^{{}}",
        f"refs/tags/{ref}",
    ):
        if candidate in refs:
            return refs[candidate]

    return next(iter(refs.values()))


async def get_remote_sha(repo: str, ref: str, cwd: Path) -> str:
    """Resolve a ref on the remote without cloning.

    Args:
        repo: Repository URL or path
        ref: Branch, tag or full commit sha
        cwd: Working directory to run git in

    Returns:
        The 40-character commit sha

    Raises:
        GitError: If the remote cannot be reached or the ref does not exist
    """
    if SHA_PATTERN.match(ref):
        return ref

    stdout, stderr, rc = await _run_git_command(["ls-remote", repo, ref], cwd)
    if rc != 0:
        raise GitError(f"Failed to query remote: {stderr.strip()}")

    sha = _pick_ref_sha(stdout, ref)
    if sha is None:
        raise GitError(f"Ref not found on remote: {ref}")
    return sha


async def clone_repository(repo: str, dest: Path) -> None:
    """Clone repo into dest without checking out a working tree.

    Raises:
        GitError: If the clone fails
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    stdout, stderr, rc = await _run_git_command(
        ["clone", "--no-checkout", repo, str(dest)], dest.parent
    )
    if rc != 0:
        raise GitError(f"Failed to clone repository: {stderr.strip()}")


async def fetch_ref(repo_path: Path, ref: str) -> None:
    """Fetch a ref from origin into FETCH_HEAD.

    Raises:
        GitError: If the fetch fails
    """
    stdout, stderr, rc = await _run_git_command(["fetch", "origin", ref], repo_path)
    if rc != 0:
        raise GitError(f"Failed to fetch {ref}: {stderr.strip()}")


async def checkout_detached(repo_path: Path, commit: str = "FETCH_HEAD") -> None:
    """Force-checkout a commit on a detached HEAD.

    Raises:
        GitError: If the checkout fails
    """
    stdout, stderr, rc = await _run_git_command(
        ["checkout", "--force", "--detach", commit], repo_path
    )
    if rc != 0:
        raise GitError(f"Failed to checkout {commit}: {stderr.strip()}")


async def get_head_sha(repo_path: Path) -> str:
    """Get the sha HEAD currently points at.

    Raises:
        GitError: If HEAD cannot be resolved
    """
    stdout, stderr, rc = await _run_git_command(["rev-parse", "HEAD"], repo_path)
    if rc != 0:
        raise GitError(f"Failed to resolve HEAD: {stderr.strip()}")
    return stdout.strip()


async def get_file_at_commit(
    repo_path: Path,
    file_path: str,
    commit: str = "HEAD",
) -> str | None:
    """Get the content of a file at a specific commit.

    Args:
        repo_path: Path to the git repository root
        file_path: Relative path to the file within the repo
        commit: The commit hash or ref

    Returns:
        File content as string, or None if file didn't exist at that commit

    Raises:
        GitError: If git command fails
    """
    args = ["show", f"{commit}:{file_path}"]

    stdout, stderr, rc = await _run_git_command(args, repo_path)

    if rc != 0:
        if "does not exist" in stderr or "exists on disk, but not in" in stderr:
            return None
        raise GitError(f"Failed to get file at commit: {stderr.strip()}")

    return stdout
