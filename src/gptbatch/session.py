"""
Batch lifecycle engine.

A ``BatchSession`` accumulates requests into one shard, submits it as a
batch job, and later resolves individual result lines of any job. Jobs and
output artifacts are looked up through a two-tier cache: a per-session
in-memory map first, then (when a cache directory is configured) files on
disk, then the remote API.
"""

from __future__ import annotations

import asyncio
import typing as t
from datetime import datetime

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from gptbatch import endpoints
from gptbatch.cache import DiskCache
from gptbatch.config import ClientConfig
from gptbatch.exceptions import (
    JobFailedError,
    JobNotCompletedError,
    LineParseError,
    NotFoundError,
    SubmissionError,
)
from gptbatch.models import Job, ResultLine
from gptbatch.shard import RequestOption, ShardBuilder
from gptbatch.utils.logging import logging_context

log = structlog.get_logger(__name__)

ModelT = t.TypeVar("ModelT", bound=BaseModel)


class BatchSession:
    """
    Accumulate, submit and resolve one batch.

    Parameters
    ----------
    http_client : httpx.AsyncClient
        Client bound to the remote API, sharing the owner's congestion state.
    config : ClientConfig
        Default model/seed and persisted cache directory.
    shard : ShardBuilder | None, optional
        Shard to accumulate into. Defaults to an empty shard with the
        standard ceilings.

    Notes
    -----
    A session submits at most one shard. Start a new session for the next
    batch; results of any job can be resolved from any session.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        config: ClientConfig,
        shard: ShardBuilder | None = None,
    ) -> None:
        self._client = http_client
        self._shard = shard or ShardBuilder(model=config.model, seed=config.seed)
        self._disk_cache = DiskCache(config.cache_dir) if config.cache_dir else None
        self._jobs: dict[str, Job] = {}
        self._artifacts: dict[str, bytes] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._submitted_job_id: str | None = None

    @property
    def shard(self) -> ShardBuilder:
        return self._shard

    @property
    def submitted_job_id(self) -> str | None:
        return self._submitted_job_id

    def add_request(
        self,
        custom_id: str,
        system_prompt: str,
        user_prompt: str,
        *options: RequestOption,
    ) -> int:
        """
        Add a request to the session's shard.

        ``custom_id`` should carry an application-wide prefix and be unique,
        a timestamp is a good choice. The caller is responsible for storing
        the returned ordinal: the third accepted request gets ordinal ``2``.

        Parameters
        ----------
        custom_id : str
            Request identifier echoed back by the remote API.
        system_prompt : str
            Task description.
        user_prompt : str
            Input data.
        *options : RequestOption
            Per-request overrides such as ``with_json_schema``.

        Returns
        -------
        int
            Ordinal of the request within the shard.

        Raises
        ------
        CapacityExceededError
            The shard is full; submit it and continue in a new session.
        SerializationError
            The request could not be serialized.
        """
        return self._shard.add(custom_id, system_prompt, user_prompt, options)

    async def submit(self, job_name_prefix: str) -> str:
        """
        Upload the shard and create a batch job for it.

        Parameters
        ----------
        job_name_prefix : str
            Application-unique prefix of the uploaded file name.

        Returns
        -------
        str
            Job identifier, or ``""`` when the shard is empty.

        Raises
        ------
        UploadError
            The shard upload failed.
        SubmissionError
            The job could not be created, or this session already submitted.
        """
        if not len(self._shard):
            log.debug(event="Nothing to submit, shard is empty")
            return ""
        if self._submitted_job_id is not None:
            raise SubmissionError(
                f"session already submitted batch {self._submitted_job_id}",
                operation="submit",
            )

        filename = f"{job_name_prefix}-{datetime.now().strftime('%Y-%m-%dT%H-%M-%S')}.jsonl"
        log.info(
            event="Submitting batch",
            filename=filename,
            request_count=self._shard.record_count,
            shard_bytes=self._shard.byte_size,
        )
        uploaded = await endpoints.upload_file(
            self._client,
            filename=filename,
            content=self._shard.content,
        )
        job = await endpoints.create_job(self._client, input_file_id=uploaded.id)
        self._submitted_job_id = job.id
        return job.id

    async def resolve_result(self, job_id: str, ordinal: int) -> str:
        """
        Return the answer content of one request of a completed job.

        Parameters
        ----------
        job_id : str
            Job identifier returned by ``submit``.
        ordinal : int
            Ordinal returned by ``add_request``.

        Returns
        -------
        str
            Content of the first choice, whatever its format.

        Raises
        ------
        JobNotCompletedError
            The job is still running; retry later.
        JobFailedError
            The job failed; carries the remote error detail.
        NotFoundError
            The ordinal is out of range or the job has no output file.
        LineParseError
            The result line is malformed, not successful, or empty.
        """
        with logging_context(job_id=job_id, ordinal=ordinal):
            job = await self._get_job(job_id)

            if job.is_failed:
                raise JobFailedError(job_id, job.error_descriptions())
            if not job.is_completed:
                raise JobNotCompletedError(job_id, job.status)
            if not job.output_file_id:
                raise NotFoundError(f"batch {job_id} has no output file", operation="resolve_result")

            content = await self._get_artifact(job.output_file_id)
            lines = content.split(b"\n")
            if lines and not lines[-1]:
                lines.pop()
            if ordinal < 0 or ordinal >= len(lines):
                raise NotFoundError(
                    f"line index out of bounds [0,{len(lines) - 1}]: {ordinal}",
                    operation="resolve_result",
                )

            return self._decode_line(job_id=job_id, ordinal=ordinal, raw_line=lines[ordinal])

    async def resolve_model(self, job_id: str, ordinal: int, model: type[ModelT]) -> ModelT:
        """
        Resolve a structured answer into ``model``.

        Raises ``LineParseError`` when the answer does not validate, on top
        of the errors of ``resolve_result``.
        """
        content = await self.resolve_result(job_id, ordinal)
        try:
            return model.model_validate_json(content)
        except ValidationError as error:
            raise LineParseError(
                f"answer does not match {model.__name__}",
                job_id=job_id,
                ordinal=ordinal,
                raw_line=content.encode("utf-8"),
            ) from error

    def forget_job(self, job_id: str) -> None:
        """Drop a job from the in-memory cache so the next lookup fetches it again."""
        self._jobs.pop(job_id, None)

    @staticmethod
    def _decode_line(*, job_id: str, ordinal: int, raw_line: bytes) -> str:
        try:
            result = ResultLine.model_validate_json(raw_line)
        except ValidationError as error:
            raise LineParseError(
                "failed to decode response", job_id=job_id, ordinal=ordinal, raw_line=raw_line
            ) from error

        if result.response.status_code != httpx.codes.OK:
            raise LineParseError(
                f"server responded with non-OK status: {result.response.status_code}",
                job_id=job_id,
                ordinal=ordinal,
                raw_line=raw_line,
            )
        if not result.response.body.choices:
            raise LineParseError(
                "response contains no choices", job_id=job_id, ordinal=ordinal, raw_line=raw_line
            )
        return result.response.body.choices[0].message.content or ""

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def _get_job(self, job_id: str) -> Job:
        async with self._lock_for(f"job:{job_id}"):
            job = self._jobs.get(job_id)
            if job is not None:
                return job

            if self._disk_cache is not None:
                job = self._disk_cache.load_job(job_id)
                if job is not None:
                    log.debug(event="Loaded batch from cache")
                    self._jobs[job_id] = job
                    return job

            job = await endpoints.retrieve_job(self._client, job_id=job_id)
            log.debug(event="Fetched batch", status=job.status)
            self._jobs[job_id] = job
            # only the terminal success state is stable enough to persist
            if self._disk_cache is not None and job.is_completed:
                self._disk_cache.store_job(job)
            return job

    async def _get_artifact(self, file_id: str) -> bytes:
        async with self._lock_for(f"file:{file_id}"):
            content = self._artifacts.get(file_id)
            if content is not None:
                return content

            if self._disk_cache is not None:
                content = self._disk_cache.load_artifact(file_id)
                if content is not None:
                    log.debug(event="Loaded file from cache", file_id=file_id)
                    self._artifacts[file_id] = content
                    return content

            content = await endpoints.retrieve_file_content(self._client, file_id=file_id)
            log.debug(event="Fetched file", file_id=file_id, bytes=len(content))
            self._artifacts[file_id] = content
            if self._disk_cache is not None:
                self._disk_cache.store_artifact(file_id, content)
            return content
