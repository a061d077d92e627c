"""Git operations: cloning thread checkouts and producing staged diffs."""

import asyncio
import logging
import subprocess
from pathlib import Path

from xavier.errors import CloneFailure, DiffFailure

logger = logging.getLogger(__name__)


def _run_git_command(args: list[str], cwd: str | Path) -> tuple[bool, str]:
    """Run a git command and return (success, output).

    Output is stdout on success and stderr (or the OS error) on failure.
    Stdout is returned unstripped so diffs keep their trailing newline.
    """
    try:
        result = subprocess.run(
            args,
            cwd=str(cwd),
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.debug(f"[GIT] Command failed: {args} - {e}")
        return False, str(e)

    if result.returncode != 0:
        error = result.stderr.strip() or f"{args[0]} {args[1]} exited with code {result.returncode}"
        logger.debug(f"[GIT] Command failed: {args} - {error}")
        return False, error
    return True, result.stdout


def _clone_sync(url: str, dest: str | Path) -> None:
    success, output = _run_git_command(["git", "clone", "--depth", "1", url, "."], dest)
    if not success:
        raise CloneFailure(f"Failed to clone {url}: {output}")


def _diff_staged_sync(repo_dir: str | Path) -> str:
    """Stage everything (tracked, untracked, deleted) and diff against HEAD."""
    success, output = _run_git_command(["git", "add", "-A"], repo_dir)
    if not success:
        raise DiffFailure(f"Failed to stage changes: {output}")

    success, output = _run_git_command(["git", "diff", "--cached"], repo_dir)
    if not success:
        raise DiffFailure(f"Failed to generate diff: {output}")
    return output


class GitProvider:
    """Source control collaborator backed by the git binary."""

    async def clone(self, url: str, dest: str | Path) -> None:
        """Shallow-clone url into the existing, empty directory dest.

        Raises:
            CloneFailure: If git fails or cannot be launched.
        """
        logger.info(f"[GIT] Cloning {url} into {dest}")
        await asyncio.to_thread(_clone_sync, url, dest)

    async def diff_staged(self, repo_dir: str | Path) -> str:
        """Stage all changes in repo_dir and return the unified diff.

        Raises:
            DiffFailure: If repo_dir is not a repository or git fails.
        """
        return await asyncio.to_thread(_diff_staged_sync, repo_dir)
