from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from datastudio_client.errors import DataStudioError, ErrorKind


def _now() -> datetime:
    return datetime.now(UTC)


class DocType(str, Enum):
    INVOICE = "INVOICE"
    EXPORT_DECLARATION = "EXPORT_DECLARATION"


class CountryCode(str, Enum):
    ES = "ES"
    PT = "PT"
    FR = "FR"
    DE = "DE"
    IT = "IT"
    GB = "GB"
    US = "US"
    MX = "MX"


class JobStatus(str, Enum):
    UPLOADED = "UPLOADED"  # processing finished, result available
    IN_PROGRESS = "IN_PROGRESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.IN_PROGRESS

    @classmethod
    def parse(cls, raw: Any) -> JobStatus:
        value = str(raw or "").strip().upper()
        value = _STATUS_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError as e:
            raise DataStudioError(
                ErrorKind.MALFORMED_PAYLOAD, f"Unknown job status: {raw!r}"
            ) from e


_STATUS_ALIASES = {
    "DONE": "UPLOADED",
    "COMPLETED": "UPLOADED",
    "PENDING": "IN_PROGRESS",
    "PROCESSING": "IN_PROGRESS",
}


@dataclass(frozen=True)
class UploadResult:
    job_id: str
    status: JobStatus


@dataclass(frozen=True)
class Job:
    job_id: str
    doc_type: DocType
    source_path: Path
    metadata: dict[str, str] = field(default_factory=dict)
    country_code: CountryCode | None = None


@dataclass(frozen=True)
class DocumentRequest:
    """One document to submit as part of a batch."""

    source_path: Path
    doc_type: DocType
    metadata: dict[str, str] = field(default_factory=dict)
    country_code: CountryCode | None = None

    def to_job(self, job_id: str) -> Job:
        return Job(
            job_id=job_id,
            doc_type=self.doc_type,
            source_path=self.source_path,
            metadata=dict(self.metadata),
            country_code=self.country_code,
        )


# -- Result payload parsing ---------------------------------------------------


def _opt_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, f"'{key}' must be a string")
    return value


def _opt_int(payload: Mapping[str, Any], key: str) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, f"'{key}' must be an integer")
    return value


def _opt_score(payload: Mapping[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, f"'{key}' must be a number")
    score = float(value)
    if not 0.0 <= score <= 1.0:
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, f"'{key}' out of range [0, 1]: {score}")
    return score


def _opt_mapping(payload: Mapping[str, Any], key: str) -> dict[str, Any] | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, f"'{key}' must be an object")
    return dict(value)


@dataclass(frozen=True)
class ProcessedResult:
    job_id: str | None
    extracted_text: str | None
    page_count: int | None
    confidence_score: float | None
    result_url: str | None
    status: str | None
    structured_data: dict[str, Any] | None
    observed_at: datetime

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ProcessedResult:
        """Build from a terminal result payload. Absent keys stay ``None``."""
        if not isinstance(payload, Mapping):
            raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, "Result payload must be an object")
        return cls(
            job_id=_opt_str(payload, "process_id"),
            extracted_text=_opt_str(payload, "extracted_text"),
            page_count=_opt_int(payload, "pages"),
            confidence_score=_opt_score(payload, "confidence_score"),
            result_url=_opt_str(payload, "url"),
            status=_opt_str(payload, "status"),
            structured_data=_opt_mapping(payload, "structured_data"),
            observed_at=_now(),
        )

    def extracted_text_or_empty(self) -> str:
        return self.extracted_text or ""

    def meets_confidence_threshold(self, threshold: float) -> bool:
        return self.confidence_score is not None and self.confidence_score >= threshold

    def structured_field(self, name: str) -> Any | None:
        if self.structured_data is None:
            return None
        return self.structured_data.get(name)

    def structured_field_as_str(self, name: str) -> str | None:
        value = self.structured_field(name)
        return None if value is None else str(value)


# -- Batch aggregation --------------------------------------------------------


@dataclass(frozen=True)
class BatchProgress:
    total: int
    completed: int
    failed: int

    @property
    def pending(self) -> int:
        return self.total - self.completed - self.failed

    @property
    def completion_percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return (self.completed + self.failed) / self.total * 100

    @property
    def is_complete(self) -> bool:
        return self.pending == 0


@dataclass(frozen=True)
class BatchFailure:
    request: DocumentRequest
    error: BaseException


@dataclass(frozen=True)
class BatchResult:
    successes: list[ProcessedResult]
    failures: dict[int, BatchFailure]  # keyed by position in the submitted sequence

    @property
    def total_count(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def success_rate(self) -> float:
        if self.total_count == 0:
            return 0.0
        return len(self.successes) / self.total_count * 100

    @property
    def all_successful(self) -> bool:
        return not self.failures

    def high_confidence_results(self, threshold: float) -> list[ProcessedResult]:
        return [r for r in self.successes if r.meets_confidence_threshold(threshold)]
