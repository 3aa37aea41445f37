"""Pytest configuration and fixtures."""

import subprocess
from pathlib import Path

import pytest

from gitreload.git import GitError
from gitreload.reload import ReloadState, ReloadTriggerError
from gitreload.staging import StagingStore
from gitreload.supervisor import RevisionSupervisor

REV_A = "aaa" + "0" * 34 + "111"
REV_B = "bbb" + "0" * 34 + "222"
REV_OLD = "ddd" + "0" * 34 + "999"

CONFIG_FILE = "fluent-bit.yaml"


class FakeRemoteSource:
    """RemoteSource double with scriptable failures."""

    def __init__(self, revision: str = REV_A, content: str = "pipeline: {}\n"):
        self.revision = revision
        self.content = content
        self.fail_revision = False
        self.fail_sync = False
        self.fail_read = False
        self.polls = 0
        self.syncs = 0

    async def get_revision_id(self) -> str:
        self.polls += 1
        if self.fail_revision:
            raise GitError("remote unreachable")
        return self.revision

    async def sync(self) -> None:
        self.syncs += 1
        if self.fail_sync:
            raise GitError("fetch failed")

    async def read_file(self, path: str) -> str:
        if self.fail_read:
            raise GitError(f"File not found in repository: {path}")
        return self.content


class FakeTrigger:
    """ReloadTrigger double that records requests.

    Marks the ReloadState as reloading like the real triggers do; tests
    play the host by calling ``state.finish_reload()``.
    """

    def __init__(self, state: ReloadState, deliver: bool = True):
        self.state = state
        self.deliver = deliver
        self.fail = False
        self.requests: list[Path] = []
        self.pending_callbacks: list = []

    def request_reload(self, artifact_path: Path, on_delivered=None) -> None:
        if self.fail:
            raise ReloadTriggerError(artifact_path, "trigger unavailable")
        self.requests.append(artifact_path)
        self.state.begin_reload(artifact_path)
        if on_delivered is None:
            return
        if self.deliver:
            on_delivered()
        else:
            self.pending_callbacks.append(on_delivered)


@pytest.fixture
def configs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "configs"
    path.mkdir()
    return path


@pytest.fixture
def store(configs_dir: Path) -> StagingStore:
    return StagingStore(configs_dir)


@pytest.fixture
def host() -> ReloadState:
    return ReloadState()


@pytest.fixture
def source() -> FakeRemoteSource:
    return FakeRemoteSource()


@pytest.fixture
def trigger(host: ReloadState) -> FakeTrigger:
    return FakeTrigger(host)


@pytest.fixture
def supervisor(
    store: StagingStore,
    source: FakeRemoteSource,
    trigger: FakeTrigger,
    host: ReloadState,
) -> RevisionSupervisor:
    sup = RevisionSupervisor(
        store=store,
        source=source,
        trigger=trigger,
        host=host,
        config_file=CONFIG_FILE,
        poll_interval=0.01,
    )
    sup.initialize()
    return sup


def write_artifact(store: StagingStore, revision_id: str, content: str = "old: true\n") -> Path:
    """Create a rendered artifact file for a revision."""
    path = store.artifact_path(revision_id)
    path.write_text(content)
    return path


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    """Write, commit and return the new HEAD sha."""
    (repo / name).write_text(content)
    _git(repo, "add", name)
    _git(repo, "commit", "-m", message)
    return _git(repo, "rev-parse", "HEAD")


@pytest.fixture
def upstream_repo(tmp_path: Path) -> Path:
    """Create a git repository holding a configuration file."""
    repo_path = tmp_path / "upstream"
    repo_path.mkdir()

    _git(repo_path, "init", "-b", "main")
    _git(repo_path, "config", "user.email", "test@example.com")
    _git(repo_path, "config", "user.name", "Test User")
    commit_file(repo_path, CONFIG_FILE, "pipeline:\n  inputs: []\n", "Initial config")

    return repo_path
