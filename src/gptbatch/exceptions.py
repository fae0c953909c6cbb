"""
gptbatch-specific runtime exceptions.
"""

from __future__ import annotations

import typing as t


class GptBatchError(Exception):
    """
    Base class for every error raised by gptbatch.

    Parameters
    ----------
    message : str
        Human readable description.
    operation : str | None, optional
        Name of the operation that failed (e.g. ``"upload_file"``).
    """

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        text = self.message
        if self.operation:
            text = f"{self.operation}: {text}"
        if self.__cause__ is not None:
            text = f"{text} ({self.__cause__})"
        return text


class NetworkError(GptBatchError):
    """Connection-level failure while talking to the remote API."""


class TooManyAttemptsError(GptBatchError):
    """
    Raised when a request kept being throttled past the configured attempt ceiling.

    Notes
    -----
    This is not a network condition: the caller should give up on the call
    and may retry at a higher level.
    """

    def __init__(self, attempts: int, *, operation: str | None = None) -> None:
        super().__init__(
            f"too many attempts ({attempts}) for a single request",
            operation=operation,
        )
        self.attempts = attempts


class CapacityExceededError(GptBatchError):
    """The shard is full; submit it before adding more requests."""


class SerializationError(GptBatchError):
    """A request could not be serialized into a shard line."""


class RemoteError(GptBatchError):
    """
    The remote API answered with an unexpected status or an undecodable body.

    Parameters
    ----------
    message : str
        Human readable description.
    operation : str | None, optional
        Name of the failed operation.
    status_code : int | None, optional
        HTTP status code, when a response was received.
    body : str | None, optional
        Raw response body, when available.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation)
        self.status_code = status_code
        self.body = body


class UploadError(RemoteError):
    """Uploading an artifact failed."""


class SubmissionError(RemoteError):
    """Creating a batch job failed."""


class JobRequestError(RemoteError):
    """Retrieving or listing batch jobs failed."""


class CancelError(RemoteError):
    """Cancelling a batch job failed."""


class FileRequestError(RemoteError):
    """Retrieving or listing files failed."""


class DeleteError(RemoteError):
    """Deleting a file failed."""


class JobNotCompletedError(GptBatchError):
    """
    The job has not reached the ``completed`` status yet.

    This is a "retry later" signal rather than a failure.
    """

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"batch {job_id} not completed yet (status={status})")
        self.job_id = job_id
        self.status = status


class JobFailedError(GptBatchError):
    """
    The remote job failed.

    Parameters
    ----------
    job_id : str
        Failed job identifier.
    errors : typing.Sequence[str]
        Formatted ``code: message`` entries reported by the remote job.
    """

    def __init__(self, job_id: str, errors: t.Sequence[str] = ()) -> None:
        detail = "; ".join(errors) if errors else "no error detail reported"
        super().__init__(f"batch {job_id} failed: {detail}")
        self.job_id = job_id
        self.errors = list(errors)


class LineParseError(GptBatchError):
    """
    A result line could not be interpreted.

    The raw line is kept so callers can inspect what the remote returned.
    """

    def __init__(self, message: str, *, job_id: str, ordinal: int, raw_line: bytes) -> None:
        super().__init__(message, operation="resolve_result")
        self.job_id = job_id
        self.ordinal = ordinal
        self.raw_line = raw_line


class NotFoundError(GptBatchError):
    """An ordinal is out of range or a referenced resource does not exist."""
