"""Error taxonomy for the job hub.

Every error a client can observe is a ``HubError`` subclass with a stable
``code`` and the HTTP status the API layer answers with.  Core components
raise these; the API renders them through a single exception handler.
"""

from __future__ import annotations


class HubError(RuntimeError):
    """Base class for all hub errors surfaced to callers."""

    code: str = "internal_error"
    http_status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class NotFoundError(HubError):
    """Raised when a project or run identifier is unknown."""

    code = "not_found"
    http_status = 404


class ProjectNotFoundError(NotFoundError):
    """Raised when a project is unknown or archived."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class RunNotFoundError(NotFoundError):
    """Raised when a run is unknown (or already purged by retention)."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class AlreadyExistsError(HubError):
    """Raised when registering a project id that is already taken."""

    code = "already_exists"
    http_status = 409


class InvalidPathError(HubError):
    """Raised when a project path is not a readable directory inside the root."""

    code = "invalid_path"
    http_status = 400


class InvalidProjectIdError(HubError):
    """Raised when a project id contains characters outside the allowed set."""

    code = "invalid_project_id"
    http_status = 400


class InvalidTransitionError(HubError):
    """Raised when a requested run state transition is not valid."""

    code = "invalid_transition"
    http_status = 409


class ThrottledError(HubError):
    """Raised when a project is at its concurrency limit (and its queue is full)."""

    code = "throttled"
    http_status = 429


class NotRunningError(HubError):
    """Raised when cancelling a run that is pending or already terminal."""

    code = "not_running"
    http_status = 409


class OutputClosedError(HubError):
    """Raised when appending output to a run that is already terminal."""

    code = "output_closed"
    http_status = 409


class UnauthorizedError(HubError):
    """Raised when the bearer credential is missing or does not match."""

    code = "unauthorized"
    http_status = 401


class ConfigurationError(HubError):
    """Raised at startup when the hub cannot run with the given configuration.

    The process should exit; it must not be caught and ignored.
    """

    code = "configuration_error"
    http_status = 500


class InvalidManifestError(HubError):
    """Raised when a project's ``jobhub.toml`` cannot be parsed or validated."""

    code = "invalid_manifest"
    http_status = 400
