"""Error kinds surfaced to callers as terminal stream events."""


class XavierError(Exception):
    """Base class for request failures.

    The message is reported to the caller verbatim.
    """


class ValidationError(XavierError):
    """Missing prompt or repository, or malformed thread ID."""


class NotFoundError(XavierError):
    """The requested thread does not exist or has expired."""


class ConflictError(XavierError):
    """The thread is bound to a different repository."""


class CloneFailure(XavierError):
    """Cloning the repository failed."""


class MutationFailure(XavierError):
    """The agent exited non-zero or could not be launched."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class DiffFailure(XavierError):
    """Staging or diffing the working directory failed."""


class UnknownError(XavierError):
    """Anything else."""
