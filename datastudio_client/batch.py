"""Bounded-concurrency batch submission of documents.

Every request ends up in exactly one of ``BatchResult.successes`` or
``BatchResult.failures``; a failing document never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Sequence
from typing import Literal

from datastudio_client.config import PollSettings
from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.pending import PendingResultRegistry
from datastudio_client.polling import poll_until_done
from datastudio_client.remote import RemoteJobClient
from datastudio_client.types import (
    BatchFailure,
    BatchProgress,
    BatchResult,
    DocumentRequest,
    JobStatus,
    ProcessedResult,
)

logger = logging.getLogger(__name__)

WaitMode = Literal["poll", "webhook"]
ProgressCallback = Callable[[BatchProgress], None]


class _Aggregator:
    """Per-call outcome collector; progress snapshots are taken under the lock."""

    def __init__(self, total: int, on_progress: ProgressCallback | None) -> None:
        self._lock = threading.Lock()
        self._total = total
        self._on_progress = on_progress
        self.successes: list[ProcessedResult] = []
        self.failures: dict[int, BatchFailure] = {}
        self._finished: set[int] = set()

    def _snapshot_locked(self) -> BatchProgress:
        return BatchProgress(
            total=self._total,
            completed=len(self.successes),
            failed=len(self.failures),
        )

    def record_success(self, index: int, result: ProcessedResult) -> None:
        with self._lock:
            if index in self._finished:
                return
            self._finished.add(index)
            self.successes.append(result)
            snapshot = self._snapshot_locked()
        self._report(snapshot)

    def record_failure(self, index: int, request: DocumentRequest, error: BaseException) -> None:
        with self._lock:
            if index in self._finished:
                return
            self._finished.add(index)
            self.failures[index] = BatchFailure(request=request, error=error)
            snapshot = self._snapshot_locked()
        self._report(snapshot)

    def record_unfinished(self, requests: Sequence[DocumentRequest]) -> None:
        for index, request in enumerate(requests):
            with self._lock:
                if index in self._finished:
                    continue
            self.record_failure(
                index,
                request,
                DataStudioError(ErrorKind.CANCELLED, f"{request.source_path} was never started"),
            )

    def _report(self, snapshot: BatchProgress) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(snapshot)
        except Exception:
            logger.warning("Progress callback raised; ignoring", exc_info=True)

    def result(self) -> BatchResult:
        with self._lock:
            return BatchResult(successes=list(self.successes), failures=dict(self.failures))


class BatchCoordinator:
    """Process many documents concurrently against one remote client.

    ``wait_mode="poll"`` polls each job with backoff; ``"webhook"`` waits on
    ``registry`` for a pushed result (see ``install_result_handlers``).
    """

    def __init__(
        self,
        client: RemoteJobClient,
        *,
        max_concurrency: int = 5,
        poll_settings: PollSettings | None = None,
        wait_mode: WaitMode = "poll",
        registry: PendingResultRegistry | None = None,
        webhook_timeout: float = 600.0,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if wait_mode == "webhook" and registry is None:
            raise ValueError("wait_mode='webhook' requires a registry")
        self._client = client
        self._max_concurrency = max_concurrency
        self._poll = poll_settings or PollSettings()
        self._wait_mode = wait_mode
        self._registry = registry
        self._webhook_timeout = webhook_timeout
        self._inflight: set[asyncio.Task[None]] = set()
        self._closed = False

    async def __aenter__(self) -> BatchCoordinator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def closed(self) -> bool:
        return self._closed

    async def process_documents(
        self,
        requests: Sequence[DocumentRequest],
        *,
        user_id: str,
        max_concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        if self._closed:
            raise RuntimeError("BatchCoordinator has been shut down")
        limit = self._max_concurrency if max_concurrency is None else max_concurrency
        if limit < 1:
            raise ValueError("max_concurrency must be >= 1")

        logger.info("Starting batch processing of %d documents (concurrency=%d)", len(requests), limit)

        agg = _Aggregator(len(requests), on_progress)
        sem = asyncio.Semaphore(limit)

        async def worker(index: int, request: DocumentRequest) -> None:
            try:
                async with sem:
                    result = await self._process_one(request, user_id=user_id)
            except asyncio.CancelledError:
                logger.warning("Cancelled while processing %s", request.source_path)
                agg.record_failure(
                    index,
                    request,
                    DataStudioError(
                        ErrorKind.CANCELLED, f"Batch cancelled before {request.source_path} finished"
                    ),
                )
                return
            except Exception as e:
                logger.error("Failed to process %s: %s", request.source_path, e)
                agg.record_failure(index, request, e)
                return
            logger.info("Successfully processed %s", request.source_path)
            agg.record_success(index, result)

        tasks = [
            asyncio.create_task(worker(i, r), name=f"batch:{i}:{r.source_path}")
            for i, r in enumerate(requests)
        ]
        self._inflight.update(tasks)
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            agg.record_unfinished(requests)
            raise
        finally:
            self._inflight.difference_update(tasks)

        # Tasks cancelled before their first step never reach the worker body.
        agg.record_unfinished(requests)
        result = agg.result()
        logger.info(
            "Batch processing completed. Successful: %d, Failed: %d",
            len(result.successes),
            len(result.failures),
        )
        return result

    async def _process_one(self, request: DocumentRequest, *, user_id: str) -> ProcessedResult:
        upload = await self._client.submit(
            user_id,
            request.doc_type,
            request.source_path,
            request.metadata,
            request.country_code,
        )
        if upload.status is JobStatus.FAILED:
            raise DataStudioError(
                ErrorKind.REMOTE_JOB_FAILED,
                f"Document upload failed immediately: {request.source_path}",
                job_id=upload.job_id,
                attempts=0,
                status=upload.status.value,
            )
        job = request.to_job(upload.job_id)
        logger.info("Submitted %s as job %s (%s)", job.source_path, job.job_id, job.doc_type.value)

        if self._wait_mode == "webhook":
            if self._registry is None:
                raise RuntimeError("wait_mode='webhook' requires a registry")
            return await self._registry.wait(job.job_id, self._webhook_timeout)

        return await poll_until_done(
            self._client,
            job.job_id,
            max_attempts=self._poll.max_attempts,
            initial_delay=self._poll.initial_delay,
            max_delay=self._poll.max_delay,
            multiplier=self._poll.multiplier,
        )

    async def shutdown(self) -> None:
        """Cancel in-flight jobs and refuse further batches."""
        self._closed = True
        tasks = list(self._inflight)
        for t in tasks:
            t.cancel()
        if tasks:
            logger.info("Cancelling %d in-flight batch job(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
