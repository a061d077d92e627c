"""Environment-driven configuration for Xavier."""

import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Threads idle for longer than this are reaped (not configurable)
THREAD_TTL_SECONDS = 60 * 60

DEFAULT_SWEEP_INTERVAL_SECONDS = 600


def get_threads_root() -> Path:
    """Get the root directory holding all thread directories.

    Default location: <tmpdir>/xavier-threads
    Can be overridden with the THREAD_WORKDIR environment variable.
    """
    env_path = os.getenv("THREAD_WORKDIR")
    if env_path:
        return Path(env_path)
    return Path(tempfile.gettempdir()) / "xavier-threads"


def get_amp_path() -> str:
    """Get the agent executable, overridable with XAVIER_AMP_PATH."""
    env_path = os.getenv("XAVIER_AMP_PATH")
    if env_path:
        return env_path
    return str(Path.home() / ".local" / "bin" / "amp")


def get_sweep_interval() -> int:
    """Seconds between periodic background sweeps."""
    raw = os.getenv("XAVIER_SWEEP_INTERVAL")
    if not raw:
        return DEFAULT_SWEEP_INTERVAL_SECONDS
    try:
        return max(1, int(raw))
    except ValueError:
        return DEFAULT_SWEEP_INTERVAL_SECONDS


def get_allowed_origins() -> list[str]:
    """CORS origins from CORS_ORIGINS, defaulting to local dev servers."""
    raw = os.getenv("CORS_ORIGINS") or "http://localhost:5173,http://localhost:3000"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
