"""Integration test fixtures: an in-process fake DataStudio service.

The real ``DataStudioClient`` talks to it through ``httpx.MockTransport``;
no network or remote account is needed.
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from datastudio_client.remote import DataStudioClient

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"


class FakeDataStudioService:
    """Jobs report IN_PROGRESS for ``polls_before_done`` status checks, then UPLOADED.

    Uploads whose file name contains ``corrupt`` are reported FAILED.
    """

    def __init__(self, polls_before_done: int = 2) -> None:
        self.polls_before_done = polls_before_done
        self.jobs: dict[str, dict] = {}
        self.uploads: list[httpx.Request] = []
        self._ids = itertools.count(1)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("x-api-key") != "integration-key":
            return httpx.Response(401, json={"detail": "invalid api key"})

        parts = request.url.path.strip("/").split("/")
        if request.method == "POST" and parts == ["v1", "documents"]:
            return self._upload(request)
        if request.method == "GET" and len(parts) == 4 and parts[:2] == ["v1", "documents"]:
            job = self.jobs.get(parts[2])
            if job is None:
                return httpx.Response(404, json={"detail": "unknown process"})
            if parts[3] == "status":
                return self._status(parts[2], job)
            if parts[3] == "result":
                return httpx.Response(200, json=self.result_payload(parts[2]))
        return httpx.Response(404, json={"detail": "not found"})

    def _upload(self, request: httpx.Request) -> httpx.Response:
        self.uploads.append(request)
        job_id = f"proc-{next(self._ids)}"
        failed = b"corrupt" in request.content
        self.jobs[job_id] = {"checks": 0, "failed": failed}
        return httpx.Response(
            201, json={"process_id": job_id, "status": "FAILED" if failed else "IN_PROGRESS"}
        )

    def _status(self, job_id: str, job: dict) -> httpx.Response:
        job["checks"] += 1
        if job["failed"]:
            status = "FAILED"
        elif job["checks"] > self.polls_before_done:
            status = "UPLOADED"
        else:
            status = "IN_PROGRESS"
        return httpx.Response(200, json={"process_id": job_id, "status": status})

    @staticmethod
    def result_payload(job_id: str) -> dict:
        return {
            "process_id": job_id,
            "status": "completed",
            "pages": 2,
            "confidence_score": 0.92,
            "extracted_text": f"text of {job_id}",
            "structured_data": {"declaration_number": job_id.upper()},
        }


@pytest.fixture
def service() -> FakeDataStudioService:
    return FakeDataStudioService()


@pytest_asyncio.fixture
async def api_client(service: FakeDataStudioService) -> AsyncIterator[DataStudioClient]:
    async with DataStudioClient(
        api_key="integration-key",
        base_url="https://datastudio.test",
        transport=httpx.MockTransport(service),
    ) as client:
        yield client


@pytest.fixture
def pdf_files(tmp_path: Path) -> list[Path]:
    paths = []
    for name in ("export-1.pdf", "export-2.pdf", "export-3.pdf", "corrupt-4.pdf"):
        path = tmp_path / name
        path.write_bytes(PDF_BYTES)
        paths.append(path)
    return paths
