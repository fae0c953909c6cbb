"""
Persistent on-disk cache for completed jobs and artifact contents.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import ValidationError

from gptbatch.models import Job

log = structlog.get_logger(__name__)


class DiskCache:
    """
    Directory-backed cache of completed jobs and artifact contents.

    Layout is ``<job_id>.json`` for serialized jobs and ``<file_id>.jsonl``
    for raw artifact bytes. Reads and writes never raise: failures are
    logged and reported as cache misses, so callers fall back to a live fetch.

    Parameters
    ----------
    directory : Path
        Cache directory, created on first write.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory

    def job_path(self, job_id: str) -> Path:
        return self._directory / f"{job_id}.json"

    def artifact_path(self, file_id: str) -> Path:
        return self._directory / f"{file_id}.jsonl"

    def load_job(self, job_id: str) -> Job | None:
        """
        Load a persisted job.

        Parameters
        ----------
        job_id : str
            Job identifier.

        Returns
        -------
        Job | None
            Cached job, or ``None`` when absent or unreadable.
        """
        path = self.job_path(job_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as error:
            log.error(event="Failed to read job from cache", job_id=job_id, error=str(error))
            return None

        try:
            return Job.model_validate_json(data)
        except ValidationError as error:
            log.error(event="Failed to decode cached job", job_id=job_id, error=str(error))
            return None

    def store_job(self, job: Job) -> None:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            self.job_path(job.id).write_text(job.model_dump_json(), encoding="utf-8")
        except OSError as error:
            log.error(event="Failed to write job to cache", job_id=job.id, error=str(error))

    def load_artifact(self, file_id: str) -> bytes | None:
        path = self.artifact_path(file_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as error:
            log.error(event="Failed to read file from cache", file_id=file_id, error=str(error))
            return None

    def store_artifact(self, file_id: str, content: bytes) -> None:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            self.artifact_path(file_id).write_bytes(content)
        except OSError as error:
            log.error(event="Failed to write file to cache", file_id=file_id, error=str(error))
