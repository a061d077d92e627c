"""
Pytest configuration and fixtures for Xavier tests.

Key testing philosophy:
- Use real git against local repositories (no network)
- Replace the amp agent with small shell scripts
- Test our own logic (thread lifecycle, sweep, event ordering)
"""

import asyncio
import stat
import subprocess
from pathlib import Path

import pytest
import pytest_asyncio

from xavier import task_registry
from xavier.errors import CloneFailure
from xavier.git import GitProvider, _clone_sync
from xavier.store import ThreadStore

REPO_REF = "example.com/org/proj"
REPO_URL = f"https://{REPO_REF}"
OTHER_REPO_REF = "example.com/org/other"


def init_repo(path: Path) -> Path:
    """Create a git repo with one committed file."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init"], cwd=path, capture_output=True, check=True)
    subprocess.run(
        ["git", "config", "user.email", "test@test.com"],
        cwd=path,
        capture_output=True,
        check=True,
    )
    subprocess.run(
        ["git", "config", "user.name", "Test User"],
        cwd=path,
        capture_output=True,
        check=True,
    )
    (path / "README.md").write_text("hello\n")
    (path / "old.txt").write_text("to be deleted\n")
    subprocess.run(["git", "add", "."], cwd=path, capture_output=True, check=True)
    subprocess.run(["git", "commit", "-m", "Initial commit"], cwd=path, capture_output=True, check=True)
    return path


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script standing in for amp."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class LocalGitProvider(GitProvider):
    """Clones https:// URLs from local repositories instead of the network."""

    def __init__(self, remotes: dict[str, Path]):
        self.remotes = remotes
        self.cloned: list[str] = []

    async def clone(self, url, dest):
        self.cloned.append(url)
        source = self.remotes.get(url)
        if source is None:
            raise CloneFailure(f"Failed to clone {url}: repository not found")
        await asyncio.to_thread(_clone_sync, f"file://{source}", dest)


@pytest.fixture
def store(tmp_path):
    return ThreadStore(tmp_path / "threads")


@pytest.fixture
def origin_repo(tmp_path):
    return init_repo(tmp_path / "origin")


@pytest.fixture
def git_provider(origin_repo):
    return LocalGitProvider({REPO_URL: origin_repo})


@pytest.fixture
def editing_agent(tmp_path):
    """Agent that appends its prompt to CHANGES.md, deletes old.txt and edits README.md."""
    return write_script(
        tmp_path / "amp-edit",
        'printf "%s\\n" "$2" >> CHANGES.md\n'
        "rm -f old.txt\n"
        "echo world >> README.md\n",
    )


@pytest.fixture
def noop_agent(tmp_path):
    return write_script(tmp_path / "amp-noop", "exit 0\n")


@pytest.fixture
def failing_agent(tmp_path):
    return write_script(tmp_path / "amp-fail", "exit 3\n")


async def drain_background() -> None:
    """Wait for fire-and-forget tasks (sweeps) spawned so far."""
    pending = [task for task in task_registry._background_tasks if not task.done()]
    await asyncio.gather(*pending, return_exceptions=True)


@pytest_asyncio.fixture
async def settle_background():
    yield
    await drain_background()
