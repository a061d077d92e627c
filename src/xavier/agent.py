"""Run the amp agent against a thread's working directory."""

import asyncio
import logging
import subprocess
from pathlib import Path

from xavier.config import get_amp_path
from xavier.errors import MutationFailure

logger = logging.getLogger(__name__)


class AgentRunner:
    """Launches the agent as a child process.

    The child inherits the server's stdout/stderr; its output is not
    captured. There is no timeout: the agent runs until it exits.
    """

    def __init__(self, executable: str | None = None):
        self.executable = executable or get_amp_path()

    def build_command(self, prompt: str) -> list[str]:
        return [self.executable, "-x", prompt, "--dangerously-allow-all"]

    def _run_sync(self, work_dir: str | Path, prompt: str) -> None:
        try:
            result = subprocess.run(self.build_command(prompt), cwd=str(work_dir))
        except OSError as e:
            logger.error(f"[AGENT] Failed to launch {self.executable}: {e}")
            raise MutationFailure(str(e)) from e

        if result.returncode != 0:
            raise MutationFailure(
                f"amp exited with code {result.returncode}",
                exit_code=result.returncode,
            )

    async def run(self, work_dir: str | Path, prompt: str) -> None:
        """Apply prompt to the checkout in work_dir.

        Raises:
            MutationFailure: On a non-zero exit or if the agent can't start.
        """
        await asyncio.to_thread(self._run_sync, work_dir, prompt)
