"""Error taxonomy for the DataStudio client.

A single exception type carries an ``ErrorKind`` tag. Callers branch on
``exc.kind`` instead of on exception subclasses.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    FILE_VALIDATION = "file_validation"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    NOT_READY = "not_ready"
    NETWORK = "network"
    SERVER = "server"
    API = "api"
    REMOTE_JOB_FAILED = "remote_job_failed"
    TIMEOUT = "timeout"
    MALFORMED_PAYLOAD = "malformed_payload"
    WEBHOOK_PROCESSING = "webhook_processing"
    CANCELLED = "cancelled"


_TRANSIENT_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.SERVER})


class DataStudioError(Exception):
    """Error raised by every layer of the client.

    Context fields are optional and filled in by whichever layer knows them:
    the remote client sets ``status_code``, the polling engine sets
    ``job_id``/``attempts``/``status``, the webhook dispatcher sets
    ``event_type``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        job_id: str | None = None,
        attempts: int | None = None,
        status: str | None = None,
        status_code: int | None = None,
        event_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.job_id = job_id
        self.attempts = attempts
        self.status = status
        self.status_code = status_code
        self.event_type = event_type

    @property
    def is_transient(self) -> bool:
        return self.kind in _TRANSIENT_KINDS

    def context(self) -> dict[str, object]:
        """Non-empty context fields, for structured logging."""
        fields = {
            "kind": self.kind.value,
            "job_id": self.job_id,
            "attempts": self.attempts,
            "status": self.status,
            "status_code": self.status_code,
            "event_type": self.event_type,
        }
        return {k: v for k, v in fields.items() if v is not None}

    def __repr__(self) -> str:
        return f"DataStudioError({self.kind.value!r}, {self.message!r})"


_HINTS: dict[ErrorKind, str] = {
    ErrorKind.FILE_VALIDATION: (
        "Please ensure the file exists, is a valid PDF file and is less than 10 MB in size."
    ),
    ErrorKind.AUTHENTICATION: (
        "Please verify your API key is correct. Set it via: export DATASTUDIO_API_KEY=your_api_key"
    ),
    ErrorKind.NOT_FOUND: "The document id is unknown to the service.",
    ErrorKind.NOT_READY: "The document is still processing. Try again later.",
    ErrorKind.NETWORK: "Please check your internet connection and try again.",
    ErrorKind.SERVER: "The server encountered an error. Please try again later.",
    ErrorKind.REMOTE_JOB_FAILED: "The service could not process the document.",
    ErrorKind.TIMEOUT: "Processing did not finish in time. Check the status later.",
    ErrorKind.MALFORMED_PAYLOAD: "The service returned data that could not be parsed.",
    ErrorKind.WEBHOOK_PROCESSING: "A webhook handler failed; see the logs for the cause.",
    ErrorKind.CANCELLED: "The operation was cancelled.",
}

_TITLES: dict[ErrorKind, str] = {
    ErrorKind.FILE_VALIDATION: "File Error",
    ErrorKind.AUTHENTICATION: "Authentication Error",
    ErrorKind.NOT_FOUND: "Document Not Found",
    ErrorKind.NOT_READY: "Document Not Ready",
    ErrorKind.NETWORK: "Network Error",
    ErrorKind.SERVER: "Server Error",
    ErrorKind.REMOTE_JOB_FAILED: "Processing Failed",
    ErrorKind.TIMEOUT: "Timeout",
    ErrorKind.MALFORMED_PAYLOAD: "Malformed Payload",
    ErrorKind.WEBHOOK_PROCESSING: "Webhook Error",
    ErrorKind.CANCELLED: "Cancelled",
}


def describe_error(exc: BaseException) -> str:
    """Render an actionable, multi-line message for a CLI user."""
    if not isinstance(exc, DataStudioError):
        return f"Error: {exc}"

    lines = [f"{_TITLES.get(exc.kind, 'Error')}: {exc.message}"]
    if exc.job_id:
        lines.append(f"Document: {exc.job_id}")
    if exc.attempts is not None:
        lines.append(f"Attempts: {exc.attempts}")
    if exc.status:
        lines.append(f"Last status: {exc.status}")
    if exc.status_code:
        lines.append(f"Status Code: {exc.status_code}")
    hint = _HINTS.get(exc.kind)
    if hint:
        lines.append(hint)
    return "\n".join(lines)
