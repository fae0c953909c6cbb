"""
Client owning the HTTP connection pool and the congestion state.
"""

from __future__ import annotations

import typing as t
from dataclasses import replace

import httpx
import structlog

from gptbatch import endpoints
from gptbatch.config import ClientConfig, resolve_api_key, resolve_cache_dir
from gptbatch.models import FileObject, Job, JobStatus
from gptbatch.session import BatchSession
from gptbatch.transport import CongestionController, build_transport

log = structlog.get_logger(__name__)


class GptBatchClient:
    """
    Entry point for batch sessions and operational calls.

    All requests of one client, including those of its sessions, share a
    single ``CongestionController``: throttling observed by one caller slows
    down every caller of this client. Independent clients have independent
    congestion state.

    Parameters
    ----------
    api_key : str | None, optional
        Bearer token. Defaults to ``OPENAI_API_KEY`` (``.env`` files are read).
    config : ClientConfig | None, optional
        Client settings. A missing ``cache_dir`` falls back to
        ``GPTBATCH_CACHE_DIR`` when set.
    transport : httpx.AsyncBaseTransport | None, optional
        Innermost transport, mostly useful for tests.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        config: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = config or ClientConfig()
        if config.cache_dir is None:
            config = replace(config, cache_dir=resolve_cache_dir())
        self.config = config
        self.congestion = CongestionController(config.congestion)
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bearer {resolve_api_key(api_key)}",
                "Accept": "application/json",
            },
            timeout=config.timeout,
            transport=build_transport(self.congestion, base=transport),
        )
        log.debug(
            event="Initialized client",
            base_url=config.base_url,
            model=config.model,
            cache_dir=str(config.cache_dir) if config.cache_dir else None,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http

    async def __aenter__(self) -> GptBatchClient:
        return self

    async def __aexit__(self, *exc_info: t.Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def new_batch_session(self) -> BatchSession:
        """Start an empty session sharing this client's transport and cache."""
        return BatchSession(http_client=self._http, config=self.config)

    async def retrieve_job(self, job_id: str) -> Job:
        return await endpoints.retrieve_job(self._http, job_id=job_id)

    async def list_jobs(self, *statuses: JobStatus | str) -> list[Job]:
        """
        List every batch job, optionally keeping only the given statuses.

        Parameters
        ----------
        *statuses : JobStatus | str
            Statuses to keep. No statuses keeps every job.

        Returns
        -------
        list[Job]
            Matching jobs.
        """
        jobs = await endpoints.list_jobs(self._http)
        if not statuses:
            return jobs
        wanted = {str(status) for status in statuses}
        return [job for job in jobs if job.status in wanted]

    async def cancel_job(self, job_id: str) -> None:
        await endpoints.cancel_job(self._http, job_id=job_id)

    async def retrieve_file(self, file_id: str) -> FileObject:
        return await endpoints.retrieve_file(self._http, file_id=file_id)

    async def list_files(self) -> list[FileObject]:
        return await endpoints.list_files(self._http)

    async def retrieve_file_content(self, file_id: str) -> bytes:
        return await endpoints.retrieve_file_content(self._http, file_id=file_id)

    async def delete_file(self, file_id: str) -> None:
        await endpoints.delete_file(self._http, file_id=file_id)
