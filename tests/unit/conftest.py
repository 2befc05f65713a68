"""Unit test conftest: no network or remote service required."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

import pytest

from datastudio_client.config import PollSettings
from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.types import CountryCode, DocType, JobStatus, UploadResult


class FakeRemoteClient:
    """Scripted stand-in for the DataStudio API.

    Every submitted job replays ``statuses`` (the last entry repeats). Jobs
    whose file name is in ``failing`` report FAILED; names in ``rejecting``
    fail at upload time.
    """

    def __init__(
        self,
        statuses: Iterable[JobStatus] = (JobStatus.UPLOADED,),
        *,
        failing: Iterable[str] = (),
        rejecting: Iterable[str] = (),
        calls: list[str] | None = None,
        on_submit: Callable[[str], None] | None = None,
    ) -> None:
        self._statuses = list(statuses)
        self._failing = set(failing)
        self._rejecting = set(rejecting)
        self._scripts: dict[str, list[JobStatus]] = {}
        self._ids = itertools.count(1)
        self._on_submit = on_submit
        self.calls = calls if calls is not None else []
        self.submitted: list[tuple[str, DocType, Path, dict[str, str], CountryCode | None]] = []
        self.active = 0
        self.max_active = 0

    def _leave(self) -> None:
        self.active -= 1

    async def submit(
        self,
        user_id: str,
        doc_type: DocType,
        file_path: Path,
        metadata: Mapping[str, str] | None = None,
        country_code: CountryCode | None = None,
    ) -> UploadResult:
        await asyncio.sleep(0)
        self.calls.append("submit")
        name = Path(file_path).name
        if name in self._rejecting:
            raise DataStudioError(ErrorKind.FILE_VALIDATION, f"File not found: {file_path}")
        job_id = f"job-{next(self._ids)}"
        self.submitted.append((user_id, doc_type, Path(file_path), dict(metadata or {}), country_code))
        self._scripts[job_id] = [JobStatus.FAILED] if name in self._failing else list(self._statuses)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        if self._on_submit is not None:
            self._on_submit(job_id)
        return UploadResult(job_id=job_id, status=JobStatus.IN_PROGRESS)

    async def get_status(self, job_id: str) -> UploadResult:
        await asyncio.sleep(0)
        self.calls.append("status")
        script = self._scripts[job_id]
        status = script.pop(0) if len(script) > 1 else script[0]
        if status is JobStatus.FAILED:
            self._leave()
        return UploadResult(job_id=job_id, status=status)

    async def get_result(self, job_id: str) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append("result")
        self._leave()
        return {
            "process_id": job_id,
            "status": "completed",
            "pages": 1,
            "confidence_score": 0.9,
            "structured_data": {"job": job_id},
        }


@pytest.fixture
def fast_poll() -> PollSettings:
    return PollSettings(max_attempts=5, initial_delay=0.001, max_delay=0.004)


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    path = tmp_path / "invoice.pdf"
    path.write_bytes(b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n")
    return path


@pytest.fixture
def make_client() -> Callable[..., FakeRemoteClient]:
    return FakeRemoteClient
