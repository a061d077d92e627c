"""Filesystem-backed thread storage for Xavier.

Layout per thread:
    <root>/<thread_id>/meta.json   metadata record
    <root>/<thread_id>/repo/       working checkout
"""

import logging
import os
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictInt, StrictStr
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"
REPO_DIRNAME = "repo"


def utcnow() -> datetime:
    return datetime.now(UTC)


class ThreadMeta(BaseModel):
    """Persisted metadata for one thread.

    Stored with camelCase keys; naive timestamps, a non-integer step or
    missing keys make a record unreadable.
    """

    model_config = ConfigDict(populate_by_name=True)

    thread_id: StrictStr = Field(alias="threadId")
    repo_url: StrictStr = Field(alias="repoUrl")
    created_at: AwareDatetime = Field(alias="createdAt")
    last_access_at: AwareDatetime = Field(alias="lastAccessAt")
    step: StrictInt = Field(ge=1)


class ThreadStore:
    """CRUD and expiry scan over thread directories under a root.

    All methods are blocking; async callers go through asyncio.to_thread.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def thread_dir(self, thread_id: str) -> Path:
        return self.root / thread_id

    def meta_path(self, thread_id: str) -> Path:
        return self.thread_dir(thread_id) / META_FILENAME

    def repo_dir(self, thread_id: str) -> Path:
        return self.thread_dir(thread_id) / REPO_DIRNAME

    def ensure_root(self) -> None:
        """Create the root directory if it doesn't exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    def create_thread_dir(self, thread_id: str) -> Path:
        """Create the thread directory and its empty checkout directory."""
        repo_dir = self.repo_dir(thread_id)
        repo_dir.mkdir(parents=True, exist_ok=True)
        return repo_dir

    def load(self, thread_id: str) -> ThreadMeta | None:
        """Read a thread's metadata.

        Any I/O or parse failure is reported as None: unreadable metadata
        is treated the same as a missing thread.
        """
        try:
            raw = self.meta_path(thread_id).read_text(encoding="utf-8")
            return ThreadMeta.model_validate_json(raw)
        except FileNotFoundError:
            return None
        except (OSError, PydanticValidationError) as e:
            logger.debug(f"Unreadable metadata for thread {thread_id}: {e}")
            return None

    def save(self, meta: ThreadMeta) -> None:
        """Write the full metadata record, replacing any previous version."""
        path = self.meta_path(meta.thread_id)
        tmp_path = path.with_name(f".{META_FILENAME}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(meta.model_dump_json(by_alias=True, indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def remove(self, thread_id: str) -> bool:
        """Recursively delete a thread directory.

        Returns:
            True if this call removed it, False if it was already gone.
        """
        try:
            shutil.rmtree(self.thread_dir(thread_id))
            return True
        except FileNotFoundError:
            return False

    def list_thread_ids(self) -> list[str]:
        """Names of all top-level thread directories."""
        try:
            entries = list(os.scandir(self.root))
        except FileNotFoundError:
            return []
        ids = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    ids.append(entry.name)
            except OSError:
                continue
        return sorted(ids)

    def list_threads(self) -> list[ThreadMeta]:
        """Readable metadata of all threads."""
        threads = []
        for thread_id in self.list_thread_ids():
            meta = self.load(thread_id)
            if meta is not None:
                threads.append(meta)
        return threads

    def is_expired(self, thread_id: str, ttl: timedelta, now: datetime) -> bool:
        """Whether a thread has been idle for longer than ttl.

        Falls back to the directory's mtime when metadata is unreadable.
        A directory that no longer exists is not expired.
        """
        meta = self.load(thread_id)
        if meta is not None:
            return now - meta.last_access_at > ttl

        try:
            mtime = self.thread_dir(thread_id).stat().st_mtime
        except FileNotFoundError:
            return False
        return now.timestamp() - mtime > ttl.total_seconds()

    def expired_thread_ids(self, ttl: timedelta, now: datetime | None = None) -> list[str]:
        """Candidates for reaping. Each must be re-checked before removal."""
        self.ensure_root()
        now = now or utcnow()
        return [
            thread_id
            for thread_id in self.list_thread_ids()
            if self.is_expired(thread_id, ttl, now)
        ]

    def remove_if_expired(self, thread_id: str, ttl: timedelta, now: datetime | None = None) -> bool:
        """Re-read the thread's state and delete it only if still expired.

        A thread refreshed since it was found expired survives.
        """
        if not self.is_expired(thread_id, ttl, now or utcnow()):
            return False
        if self.remove(thread_id):
            logger.info(f"[SWEEP] Removed expired thread {thread_id}")
            return True
        return False

    def sweep_expired(self, ttl: timedelta, now: datetime | None = None) -> list[str]:
        """Remove every thread idle for longer than ttl.

        Takes no locks; the server's sweep goes through
        session.sweep_expired_threads instead, which skips threads a
        request is working on.

        Returns:
            IDs of the threads removed by this call.
        """
        now = now or utcnow()
        return [
            thread_id
            for thread_id in self.expired_thread_ids(ttl, now)
            if self.remove_if_expired(thread_id, ttl, now)
        ]
