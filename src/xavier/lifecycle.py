"""Thread creation and resumption."""

import asyncio
import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from xavier.errors import ConflictError, NotFoundError, ValidationError
from xavier.git import GitProvider
from xavier.store import ThreadMeta, ThreadStore, utcnow

logger = logging.getLogger(__name__)

THREAD_ID_PATTERN = re.compile(r"[0-9a-fA-F-]{36}")

StatusCallback = Callable[[str], Awaitable[None]]


async def _ignore_status(msg: str) -> None:
    return None


def repo_url_for(repo_ref: str) -> str:
    """Canonical clone URL for a host+path repository reference."""
    return f"https://{repo_ref}"


def is_valid_thread_id(thread_id: str) -> bool:
    return bool(THREAD_ID_PATTERN.fullmatch(thread_id))


@dataclass(frozen=True)
class ResolvedThread:
    thread_id: str
    work_dir: Path
    step: int


class ThreadLifecycle:
    """Creates new threads and resumes existing ones.

    Enforces the repository binding of a thread and advances its step
    counter before any mutation runs.
    """

    def __init__(self, store: ThreadStore, git: GitProvider):
        self.store = store
        self.git = git

    async def resolve(
        self,
        requested_thread_id: str | None,
        repo_ref: str | None,
        on_status: StatusCallback = _ignore_status,
    ) -> ResolvedThread:
        """Resume requested_thread_id, or create a new thread for repo_ref.

        Raises:
            ValidationError: Missing repo for a new thread, or malformed ID.
            NotFoundError: The thread has no readable metadata.
            ConflictError: repo_ref names a different repository.
            CloneFailure: Cloning a new thread's repository failed.
        """
        await asyncio.to_thread(self.store.ensure_root)
        if requested_thread_id:
            return await self._resume(requested_thread_id, repo_ref)
        return await self._create(repo_ref, on_status)

    async def _create(self, repo_ref: str | None, on_status: StatusCallback) -> ResolvedThread:
        if not repo_ref:
            raise ValidationError("Repo is required for new thread")

        await on_status(f"Initializing workspace for {repo_ref}...")
        thread_id = str(uuid.uuid4())
        repo_url = repo_url_for(repo_ref)
        work_dir = await asyncio.to_thread(self.store.create_thread_dir, thread_id)

        await on_status("Cloning repository...")
        try:
            await self.git.clone(repo_url, work_dir)
        except Exception:
            # Half-built thread without metadata; don't leave it for the sweep
            await asyncio.to_thread(self.store.remove, thread_id)
            raise

        now = utcnow()
        meta = ThreadMeta(
            thread_id=thread_id,
            repo_url=repo_url,
            created_at=now,
            last_access_at=now,
            step=1,
        )
        await asyncio.to_thread(self.store.save, meta)
        logger.info(f"Created thread {thread_id} for {repo_url}")
        return ResolvedThread(thread_id=thread_id, work_dir=work_dir, step=meta.step)

    async def _resume(self, thread_id: str, repo_ref: str | None) -> ResolvedThread:
        if not is_valid_thread_id(thread_id):
            raise ValidationError("Invalid thread ID")

        meta = await asyncio.to_thread(self.store.load, thread_id)
        if meta is None:
            raise NotFoundError("Thread expired or not found")

        if repo_ref and repo_url_for(repo_ref) != meta.repo_url:
            raise ConflictError("Thread is bound to a different repository")

        now = utcnow()
        if now <= meta.last_access_at:
            now = meta.last_access_at + timedelta(microseconds=1)
        updated = meta.model_copy(update={"step": meta.step + 1, "last_access_at": now})
        await asyncio.to_thread(self.store.save, updated)

        logger.info(f"Resumed thread {thread_id} at step {updated.step}")
        return ResolvedThread(
            thread_id=thread_id,
            work_dir=self.store.repo_dir(thread_id),
            step=updated.step,
        )
