"""Poll a remote job with exponential backoff until it reaches a terminal state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from datastudio_client.backoff import next_delay
from datastudio_client.config import PollSettings
from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.remote import RemoteJobClient
from datastudio_client.types import DocumentRequest, JobStatus, ProcessedResult, UploadResult

logger = logging.getLogger(__name__)


async def poll_until_done(
    client: RemoteJobClient,
    job_id: str,
    *,
    max_attempts: int,
    initial_delay: float,
    max_delay: float,
    multiplier: float = 2.0,
) -> ProcessedResult:
    """Wait for ``job_id`` to finish and return its parsed result.

    Sleeps before every status check, including the first. Only
    ``IN_PROGRESS`` is retried; ``FAILED`` raises ``REMOTE_JOB_FAILED`` at once
    and any error from the client propagates unchanged.

    Raises:
        DataStudioError: ``TIMEOUT`` once ``max_attempts`` checks have all
            reported ``IN_PROGRESS``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    status = JobStatus.IN_PROGRESS
    for attempt in range(1, max_attempts + 1):
        await asyncio.sleep(next_delay(attempt - 1, initial_delay, max_delay, multiplier))

        status = (await client.get_status(job_id)).status
        logger.debug("Poll attempt %d/%d for %s: status = %s", attempt, max_attempts, job_id, status.value)

        if status is JobStatus.UPLOADED:
            logger.info("Document %s processing completed, retrieving result", job_id)
            payload = await client.get_result(job_id)
            return ProcessedResult.from_payload(payload)
        if status is JobStatus.FAILED:
            raise DataStudioError(
                ErrorKind.REMOTE_JOB_FAILED,
                f"Document processing failed for {job_id}",
                job_id=job_id,
                attempts=attempt,
                status=status.value,
            )
        logger.info("Document %s still processing (attempt %d/%d)", job_id, attempt, max_attempts)

    raise DataStudioError(
        ErrorKind.TIMEOUT,
        f"Timeout waiting for document processing after {max_attempts} attempts",
        job_id=job_id,
        attempts=max_attempts,
        status=status.value,
    )


class DocumentProcessor:
    """Upload-and-wait operations for single documents.

    ``submit_in_background`` runs the same pull loop as a task and reports
    through callbacks; ``shutdown`` cancels any such tasks still running.
    """

    def __init__(
        self,
        client: RemoteJobClient,
        *,
        user_id: str,
        poll_settings: PollSettings | None = None,
    ) -> None:
        self._client = client
        self._user_id = user_id
        self._poll = poll_settings or PollSettings()
        self._tasks: set[asyncio.Task[ProcessedResult]] = set()
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("DocumentProcessor has been shut down")

    async def submit(self, request: DocumentRequest) -> UploadResult:
        self._ensure_open()
        return await self._client.submit(
            self._user_id,
            request.doc_type,
            request.source_path,
            request.metadata,
            request.country_code,
        )

    async def wait_for(self, job_id: str) -> ProcessedResult:
        self._ensure_open()
        return await poll_until_done(
            self._client,
            job_id,
            max_attempts=self._poll.max_attempts,
            initial_delay=self._poll.initial_delay,
            max_delay=self._poll.max_delay,
            multiplier=self._poll.multiplier,
        )

    async def submit_and_wait(self, request: DocumentRequest) -> ProcessedResult:
        upload = await self.submit(request)
        if upload.status is JobStatus.FAILED:
            raise DataStudioError(
                ErrorKind.REMOTE_JOB_FAILED,
                f"Document upload failed immediately: {request.source_path}",
                job_id=upload.job_id,
                attempts=0,
                status=upload.status.value,
            )
        return await self.wait_for(upload.job_id)

    def submit_in_background(
        self,
        request: DocumentRequest,
        *,
        on_success: Callable[[ProcessedResult], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> asyncio.Task[ProcessedResult]:
        self._ensure_open()

        async def _run() -> ProcessedResult:
            try:
                result = await self.submit_and_wait(request)
            except Exception as e:
                if on_error is not None:
                    on_error(e)
                raise
            if on_success is not None:
                on_success(result)
            return result

        task = asyncio.create_task(_run(), name=f"datastudio:{request.source_path}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def check_status(self, job_id: str) -> UploadResult:
        self._ensure_open()
        logger.debug("Checking status for processId: %s", job_id)
        return await self._client.get_status(job_id)

    async def get_result(self, job_id: str) -> ProcessedResult:
        self._ensure_open()
        logger.debug("Getting result for processId: %s", job_id)
        return ProcessedResult.from_payload(await self._client.get_result(job_id))

    async def shutdown(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
