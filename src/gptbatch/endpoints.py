"""
Stateless adapters for the remote batch and file endpoints.

Each function sends exactly one kind of request through the given
``httpx.AsyncClient`` (whose transport applies congestion control) and
decodes the typed response.
"""

from __future__ import annotations

import typing as t

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from gptbatch.exceptions import (
    CancelError,
    DeleteError,
    FileRequestError,
    JobRequestError,
    NetworkError,
    RemoteError,
    SubmissionError,
    UploadError,
)
from gptbatch.models import (
    CHAT_COMPLETIONS_ENDPOINT,
    COMPLETION_WINDOW,
    FileDeletion,
    FileObject,
    FilePage,
    FilePurpose,
    Job,
    JobPage,
)

log = structlog.get_logger(__name__)

BATCHES_PATH = "/v1/batches"
FILES_PATH = "/v1/files"
JOBS_PAGE_SIZE = 100
JSONL_CONTENT_TYPE = "application/jsonl"

ModelT = t.TypeVar("ModelT", bound=BaseModel)


async def _send(
    client: httpx.AsyncClient,
    *,
    operation: str,
    method: str,
    url: str,
    **kwargs: t.Any,
) -> httpx.Response:
    """
    Send a request, mapping connection-level failures to ``NetworkError``.

    Parameters
    ----------
    client : httpx.AsyncClient
        Client bound to the remote API.
    operation : str
        Operation name used in errors and logs.
    method : str
        HTTP method.
    url : str
        Path relative to the client base URL.
    **kwargs : typing.Any
        Forwarded to ``httpx.AsyncClient.request``.

    Returns
    -------
    httpx.Response
        Received response, whatever its status.
    """
    log.debug(event="Sending request", operation=operation, method=method, url=url)
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TransportError as error:
        log.error(event="Request failed", operation=operation, url=url, error=str(error))
        raise NetworkError(f"{method} {url} failed", operation=operation) from error


def _parse(
    response: httpx.Response,
    model: type[ModelT],
    *,
    operation: str,
    error_cls: type[RemoteError],
) -> ModelT:
    """
    Decode a ``200 OK`` JSON response into ``model``.

    Parameters
    ----------
    response : httpx.Response
        Response to decode.
    model : type[ModelT]
        Pydantic model of the expected payload.
    operation : str
        Operation name used in errors.
    error_cls : type[RemoteError]
        Error raised on non-OK status or undecodable payloads.

    Returns
    -------
    ModelT
        Decoded payload.
    """
    if response.status_code != httpx.codes.OK:
        raise error_cls(
            f"server responded with non-OK status ({response.status_code})",
            operation=operation,
            status_code=response.status_code,
            body=response.text,
        )
    try:
        return model.model_validate_json(response.content)
    except ValidationError as error:
        raise error_cls(
            "could not parse response",
            operation=operation,
            status_code=response.status_code,
            body=response.text,
        ) from error


async def create_job(client: httpx.AsyncClient, *, input_file_id: str) -> Job:
    """
    Submit a batch job for an uploaded shard.

    Parameters
    ----------
    client : httpx.AsyncClient
        Client bound to the remote API.
    input_file_id : str
        Identifier of the uploaded shard artifact.

    Returns
    -------
    Job
        Created job.
    """
    response = await _send(
        client,
        operation="create_job",
        method="POST",
        url=BATCHES_PATH,
        json={
            "input_file_id": input_file_id,
            "endpoint": CHAT_COMPLETIONS_ENDPOINT,
            "completion_window": COMPLETION_WINDOW,
        },
    )
    job = _parse(response, Job, operation="create_job", error_cls=SubmissionError)
    log.info(event="Created batch job", job_id=job.id, input_file_id=input_file_id)
    return job


async def retrieve_job(client: httpx.AsyncClient, *, job_id: str) -> Job:
    """Fetch one batch job."""
    response = await _send(
        client,
        operation="retrieve_job",
        method="GET",
        url=f"{BATCHES_PATH}/{job_id}",
    )
    return _parse(response, Job, operation="retrieve_job", error_cls=JobRequestError)


async def list_jobs(client: httpx.AsyncClient) -> list[Job]:
    """
    List every batch job, following the ``after`` cursor across pages.

    Parameters
    ----------
    client : httpx.AsyncClient
        Client bound to the remote API.

    Returns
    -------
    list[Job]
        Jobs from all pages, in server order.
    """
    jobs: list[Job] = []
    cursor: str | None = None
    while True:
        params: dict[str, t.Any] = {"limit": JOBS_PAGE_SIZE}
        if cursor:
            params["after"] = cursor
        response = await _send(
            client,
            operation="list_jobs",
            method="GET",
            url=BATCHES_PATH,
            params=params,
        )
        page = _parse(response, JobPage, operation="list_jobs", error_cls=JobRequestError)
        jobs.extend(page.data)
        if not page.has_more or not page.last_id:
            break
        cursor = page.last_id
    log.debug(event="Listed batch jobs", job_count=len(jobs))
    return jobs


async def cancel_job(client: httpx.AsyncClient, *, job_id: str) -> None:
    """
    Cancel a batch job.

    A ``409 Conflict`` means the job is already cancelled and is not an error.
    """
    response = await _send(
        client,
        operation="cancel_job",
        method="POST",
        url=f"{BATCHES_PATH}/{job_id}/cancel",
    )
    if response.status_code == httpx.codes.CONFLICT:
        log.debug(event="Batch job already cancelled", job_id=job_id)
        return
    if response.status_code != httpx.codes.OK:
        raise CancelError(
            f"failed to cancel batch {job_id}",
            operation="cancel_job",
            status_code=response.status_code,
            body=response.text,
        )
    log.info(event="Cancelled batch job", job_id=job_id)


async def upload_file(
    client: httpx.AsyncClient,
    *,
    filename: str,
    content: bytes,
) -> FileObject:
    """
    Upload a shard as a ``batch`` purpose file.

    Parameters
    ----------
    client : httpx.AsyncClient
        Client bound to the remote API.
    filename : str
        Name of the uploaded file.
    content : bytes
        Newline-delimited shard records.

    Returns
    -------
    FileObject
        Uploaded file metadata.
    """
    log.debug(event="Uploading batch file", filename=filename, bytes=len(content))
    response = await _send(
        client,
        operation="upload_file",
        method="POST",
        url=FILES_PATH,
        files={"file": (filename, content, JSONL_CONTENT_TYPE)},
        data={"purpose": FilePurpose.BATCH.value},
    )
    uploaded = _parse(response, FileObject, operation="upload_file", error_cls=UploadError)
    log.info(event="Uploaded batch file", file_id=uploaded.id, filename=filename)
    return uploaded


async def retrieve_file(client: httpx.AsyncClient, *, file_id: str) -> FileObject:
    """Fetch metadata of one file."""
    response = await _send(
        client,
        operation="retrieve_file",
        method="GET",
        url=f"{FILES_PATH}/{file_id}",
    )
    return _parse(response, FileObject, operation="retrieve_file", error_cls=FileRequestError)


async def list_files(client: httpx.AsyncClient) -> list[FileObject]:
    """List file metadata."""
    response = await _send(client, operation="list_files", method="GET", url=FILES_PATH)
    return _parse(response, FilePage, operation="list_files", error_cls=FileRequestError).data


async def retrieve_file_content(client: httpx.AsyncClient, *, file_id: str) -> bytes:
    """
    Download the raw content of a file.

    Parameters
    ----------
    client : httpx.AsyncClient
        Client bound to the remote API.
    file_id : str
        File identifier.

    Returns
    -------
    bytes
        File content.
    """
    response = await _send(
        client,
        operation="retrieve_file_content",
        method="GET",
        url=f"{FILES_PATH}/{file_id}/content",
    )
    if response.status_code != httpx.codes.OK:
        raise FileRequestError(
            f"server responded with non-OK status ({response.status_code})",
            operation="retrieve_file_content",
            status_code=response.status_code,
            body=response.text,
        )
    return response.content


async def delete_file(client: httpx.AsyncClient, *, file_id: str) -> None:
    """
    Delete a file.

    Deleting a file that no longer exists is not an error; otherwise the
    remote must acknowledge the deletion with ``deleted: true``.
    """
    response = await _send(
        client,
        operation="delete_file",
        method="DELETE",
        url=f"{FILES_PATH}/{file_id}",
    )
    if response.status_code == httpx.codes.NOT_FOUND:
        log.debug(event="File already deleted", file_id=file_id)
        return
    deletion = _parse(response, FileDeletion, operation="delete_file", error_cls=DeleteError)
    if not deletion.deleted:
        raise DeleteError(
            f"file {file_id} was not deleted",
            operation="delete_file",
            status_code=response.status_code,
            body=response.text,
        )
    log.info(event="Deleted file", file_id=file_id)
