"""Request orchestration: resolve a thread, run the agent, return the diff.

Each request produces an ordered stream of events:

    status*  (result | error)

Exactly one terminal event ends the stream. Events are produced by a
pipeline task into a queue and drained by an async generator, so status
events reach the caller while the clone and agent are still running.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel

from xavier.agent import AgentRunner
from xavier.config import THREAD_TTL_SECONDS
from xavier.errors import UnknownError, ValidationError, XavierError
from xavier.git import GitProvider
from xavier.lifecycle import ResolvedThread, StatusCallback, ThreadLifecycle
from xavier.store import ThreadStore
from xavier.task_registry import idle_thread_lock, spawn_background, thread_lock

logger = logging.getLogger(__name__)


class DiffRequest(BaseModel):
    """Body of a diff request. Validation happens in-stream, not here."""
    repo: str | None = None
    prompt: str | None = None
    threadId: str | None = None


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    msg: str


class ResultEvent(BaseModel):
    type: Literal["result"] = "result"
    diff: str
    threadId: str
    step: int


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


SessionEvent = StatusEvent | ResultEvent | ErrorEvent


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def validate_request(request: DiffRequest) -> None:
    """Checks that need no thread state.

    Raises:
        ValidationError: If the prompt is missing.
    """
    if not request.prompt:
        raise ValidationError("Prompt is required")


async def sweep_expired_threads(store: ThreadStore, ttl_seconds: int = THREAD_TTL_SECONDS) -> list[str]:
    """Reap expired threads, skipping any a request currently holds.

    Each candidate is locked and re-checked before deletion, so a request
    that refreshed it in the meantime keeps it, and a request arriving
    during deletion waits and then finds the thread gone.

    Never raises: failures are logged and an empty list is returned.
    """
    ttl = timedelta(seconds=ttl_seconds)
    removed = []
    try:
        candidates = await asyncio.to_thread(store.expired_thread_ids, ttl)
        for thread_id in candidates:
            async with idle_thread_lock(thread_id) as acquired:
                if not acquired:
                    logger.debug(f"[SWEEP] Skipping busy thread {thread_id}")
                    continue
                if await asyncio.to_thread(store.remove_if_expired, thread_id, ttl):
                    removed.append(thread_id)
    except Exception as e:
        logger.error(f"[SWEEP] Cleanup error: {e!r}")
    return removed


class SessionOrchestrator:
    """Composes thread resolution, the agent and the diff into one request."""

    def __init__(
        self,
        store: ThreadStore,
        git: GitProvider | None = None,
        agent: AgentRunner | None = None,
    ):
        self.store = store
        self.git = git or GitProvider()
        self.agent = agent or AgentRunner()
        self.lifecycle = ThreadLifecycle(store, self.git)

    def start_sweep(self) -> asyncio.Task:
        """Fire off an expiry sweep without waiting for it."""
        return spawn_background(sweep_expired_threads(self.store), name="thread-sweep")

    async def stream(self, request: DiffRequest) -> AsyncIterator[SessionEvent]:
        """Process one request, yielding events as they happen."""
        self.start_sweep()

        try:
            validate_request(request)
        except ValidationError as e:
            yield ErrorEvent(error=str(e))
            return

        queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        # Not cancelled on client disconnect; the pipeline runs to completion
        task = spawn_background(self._run(request, queue), name="session-pipeline")

        while True:
            event = await queue.get()
            if event is None:
                break
            yield event
        await task

    async def _run(self, request: DiffRequest, queue: asyncio.Queue[SessionEvent | None]) -> None:
        async def emit_status(msg: str) -> None:
            await queue.put(StatusEvent(msg=msg))

        try:
            result = await self._pipeline(request, emit_status)
            await queue.put(result)
        except XavierError as e:
            logger.warning(f"[SESSION] Request failed: {type(e).__name__}: {e}")
            await queue.put(ErrorEvent(error=error_message(e)))
        except Exception as e:
            logger.exception(f"[SESSION] Error processing request: {e!r}")
            failure = UnknownError(error_message(e))
            await queue.put(ErrorEvent(error=str(failure)))
        finally:
            await queue.put(None)

    async def _pipeline(self, request: DiffRequest, emit_status: StatusCallback) -> ResultEvent:
        prompt = request.prompt or ""
        if request.threadId:
            async with thread_lock(request.threadId):
                resolved = await self.lifecycle.resolve(request.threadId, request.repo, emit_status)
                await emit_status("Loading thread context...")
                return await self._mutate_and_diff(resolved, prompt, emit_status)

        resolved = await self.lifecycle.resolve(None, request.repo, emit_status)
        async with thread_lock(resolved.thread_id):
            return await self._mutate_and_diff(resolved, prompt, emit_status)

    async def _mutate_and_diff(
        self, resolved: ResolvedThread, prompt: str, emit_status: StatusCallback
    ) -> ResultEvent:
        await emit_status("Running amp to apply changes...")
        logger.info(f"[AGENT] Running amp in {resolved.work_dir} (step {resolved.step})")
        await self.agent.run(resolved.work_dir, prompt)

        await emit_status("Generating diff...")
        diff = await self.git.diff_staged(resolved.work_dir)
        return ResultEvent(diff=diff, threadId=resolved.thread_id, step=resolved.step)
