"""Xavier API - FastAPI backend streaming agent-driven diffs as NDJSON."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from xavier import __version__
from xavier.config import get_allowed_origins, get_sweep_interval, get_threads_root
from xavier.session import DiffRequest, SessionOrchestrator, sweep_expired_threads
from xavier.store import ThreadStore
from xavier.task_registry import background_task_count, busy_thread_ids, clear_all_tasks

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_orchestrator: SessionOrchestrator | None = None

# Periodic sweep, independent of request traffic
_sweep_task: asyncio.Task | None = None


def get_orchestrator() -> SessionOrchestrator:
    """Shared orchestrator over the configured thread root."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = SessionOrchestrator(ThreadStore(get_threads_root()))
    return _orchestrator


async def _periodic_sweep(interval_seconds: int) -> None:
    """Reap expired threads every interval, even when no requests arrive."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            reaped = await sweep_expired_threads(get_orchestrator().store)
            if reaped:
                logger.info(f"[SWEEP] Periodic sweep removed {len(reaped)} thread(s)")
        except asyncio.CancelledError:
            break


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the periodic sweep and cancel background work on shutdown."""
    global _sweep_task
    await clear_all_tasks()

    store = get_orchestrator().store
    try:
        await asyncio.to_thread(store.ensure_root)
    except OSError as e:
        logger.warning(f"Failed to create thread root {store.root}: {e}")

    if _sweep_task:
        _sweep_task.cancel()
    _sweep_task = asyncio.create_task(_periodic_sweep(get_sweep_interval()))

    logger.info(f"Xavier API started - threads stored under {store.root}")
    yield
    logger.info("Xavier API shutting down")

    if _sweep_task:
        _sweep_task.cancel()
        await asyncio.gather(_sweep_task, return_exceptions=True)
        _sweep_task = None
    await clear_all_tasks()
    logger.info("Xavier API shutdown complete")


app = FastAPI(
    title="Xavier API",
    description="Apply AI-driven code edits to cloned repositories and stream back the diff",
    version=__version__,
    lifespan=lifespan,
)

# NOTE: There is no authentication. Do not expose to untrusted networks.
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)


# Global exception handler for better error messages
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_msg = str(exc) or type(exc).__name__
    logger.exception(f"Unhandled error: {error_msg}")
    return JSONResponse(
        status_code=500,
        content={"detail": error_msg, "type": type(exc).__name__},
    )


# Health check
@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/metrics")
async def get_metrics(
    orchestrator: Annotated[SessionOrchestrator, Depends(get_orchestrator)],
) -> dict[str, int]:
    """Thread, busy thread and background task counts."""
    thread_ids = await asyncio.to_thread(orchestrator.store.list_thread_ids)
    return {
        "threads": len(thread_ids),
        "busyThreads": len(busy_thread_ids()),
        "backgroundTasks": background_task_count(),
    }


async def _ndjson_lines(orchestrator: SessionOrchestrator, request: DiffRequest) -> AsyncIterator[str]:
    async for event in orchestrator.stream(request):
        yield event.model_dump_json() + "\n"


@app.post("/api/diff")
async def create_diff(
    request: DiffRequest,
    orchestrator: Annotated[SessionOrchestrator, Depends(get_orchestrator)],
) -> StreamingResponse:
    """Run the agent against a new or resumed thread and stream the result.

    The response is newline-delimited JSON: zero or more status events
    followed by exactly one result or error event.
    """
    return StreamingResponse(
        _ndjson_lines(orchestrator, request),
        media_type="application/x-ndjson",
        headers={"X-Content-Type-Options": "nosniff"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=2026)
