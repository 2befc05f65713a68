"""HTTP client for the DataStudio document-processing API.

``RemoteJobClient`` is the interface the polling engine and batch coordinator
depend on; ``DataStudioClient`` is the httpx implementation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

import httpx

from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.types import CountryCode, DocType, JobStatus, UploadResult

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 10 * 1024 * 1024  # 10 MB
_ALLOWED_SUFFIXES = {".pdf"}


class RemoteJobClient(Protocol):
    async def submit(
        self,
        user_id: str,
        doc_type: DocType,
        file_path: Path,
        metadata: Mapping[str, str] | None = None,
        country_code: CountryCode | None = None,
    ) -> UploadResult: ...

    async def get_status(self, job_id: str) -> UploadResult: ...

    async def get_result(self, job_id: str) -> dict[str, Any]: ...


def validate_upload_file(file_path: Path) -> int:
    """Check the file can be uploaded; return its size in bytes."""
    if not file_path.exists():
        raise DataStudioError(ErrorKind.FILE_VALIDATION, f"File not found: {file_path}")
    if not file_path.is_file():
        raise DataStudioError(ErrorKind.FILE_VALIDATION, f"Not a regular file: {file_path}")
    if file_path.suffix.lower() not in _ALLOWED_SUFFIXES:
        raise DataStudioError(ErrorKind.FILE_VALIDATION, f"Only PDF files are accepted: {file_path.name}")
    size = file_path.stat().st_size
    if size > MAX_FILE_BYTES:
        raise DataStudioError(
            ErrorKind.FILE_VALIDATION,
            f"File exceeds {MAX_FILE_BYTES // (1024 * 1024)} MB limit: {file_path.name} ({size} bytes)",
        )
    return size


def _error_for_status(resp: httpx.Response, job_id: str | None) -> DataStudioError:
    code = resp.status_code
    detail = resp.text[:400]
    if code in (401, 403):
        kind = ErrorKind.AUTHENTICATION
    elif code == 404:
        kind = ErrorKind.NOT_FOUND
    elif code in (409, 425):
        kind = ErrorKind.NOT_READY
    elif code in (413, 415, 422):
        kind = ErrorKind.FILE_VALIDATION
    elif code >= 500:
        kind = ErrorKind.SERVER
    else:
        kind = ErrorKind.API
    return DataStudioError(
        kind,
        f"{code} {resp.reason_phrase}: {detail}",
        job_id=job_id,
        status_code=code,
    )


def _json_body(resp: httpx.Response, job_id: str | None) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as e:
        raise DataStudioError(
            ErrorKind.MALFORMED_PAYLOAD, "Response body is not valid JSON", job_id=job_id
        ) from e
    if not isinstance(body, dict):
        raise DataStudioError(
            ErrorKind.MALFORMED_PAYLOAD, "Response body is not a JSON object", job_id=job_id
        )
    return body


def _upload_result(body: Mapping[str, Any], job_id: str | None = None) -> UploadResult:
    pid = body.get("process_id") or job_id
    if not pid:
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, "Response is missing 'process_id'")
    return UploadResult(job_id=str(pid), status=JobStatus.parse(body.get("status")))


class DataStudioClient:
    """Async DataStudio API client.

    Webhook subscriptions (event → callback URL) are sent with every upload so
    the service knows where to push completion events.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        environment: str = "SAND_BOX",
        webhooks: Sequence[tuple[str, str]] = (),
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhooks = list(webhooks)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"x-api-key": api_key, "x-datastudio-environment": environment},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> DataStudioClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, url: str, *, job_id: str | None = None, **kwargs: Any
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise DataStudioError(
                ErrorKind.NETWORK, f"{type(e).__name__}: {e}", job_id=job_id
            ) from e
        if resp.status_code >= 400:
            raise _error_for_status(resp, job_id)
        return resp

    async def submit(
        self,
        user_id: str,
        doc_type: DocType,
        file_path: Path,
        metadata: Mapping[str, str] | None = None,
        country_code: CountryCode | None = None,
    ) -> UploadResult:
        file_path = Path(file_path)
        validate_upload_file(file_path)
        content = await asyncio.to_thread(file_path.read_bytes)

        form = {
            "user": user_id,
            "doc_type": DocType(doc_type).value,
            "metadata": json.dumps(dict(metadata or {})),
        }
        if country_code is not None:
            form["country_code"] = CountryCode(country_code).value
        if self._webhooks:
            form["webhooks"] = json.dumps([{"event": e, "url": u} for e, u in self._webhooks])

        logger.info("Uploading document: %s as %s", file_path.name, form["doc_type"])
        resp = await self._request(
            "POST",
            "/v1/documents",
            data=form,
            files={"file": (file_path.name, content, "application/pdf")},
        )
        result = _upload_result(_json_body(resp, None))
        logger.info(
            "Document uploaded with processId: %s, initial status: %s",
            result.job_id,
            result.status.value,
        )
        return result

    async def get_status(self, job_id: str) -> UploadResult:
        resp = await self._request("GET", f"/v1/documents/{job_id}/status", job_id=job_id)
        return _upload_result(_json_body(resp, job_id), job_id)

    async def get_result(self, job_id: str) -> dict[str, Any]:
        resp = await self._request("GET", f"/v1/documents/{job_id}/result", job_id=job_id)
        return _json_body(resp, job_id)
