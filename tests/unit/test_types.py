"""Unit tests for result parsing and batch bookkeeping types."""

from __future__ import annotations

from pathlib import Path

import pytest

from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.types import (
    BatchFailure,
    BatchProgress,
    BatchResult,
    CountryCode,
    DocType,
    DocumentRequest,
    JobStatus,
    ProcessedResult,
)


class TestProcessedResultFromPayload:
    def test_fields_round_trip(self, sample_payload):
        r = ProcessedResult.from_payload(sample_payload)
        assert r.job_id == "proc-123"
        assert r.extracted_text == "INVOICE 2026-001"
        assert r.page_count == 3
        assert r.confidence_score == 0.8734
        assert r.result_url == "https://results.example.com/proc-123.json"
        assert r.status == "completed"
        assert r.structured_data == sample_payload["structured_data"]
        assert r.observed_at.tzinfo is not None

    def test_rereading_fields_is_stable(self, sample_payload):
        r = ProcessedResult.from_payload(sample_payload)
        again = ProcessedResult.from_payload(
            {
                "process_id": r.job_id,
                "pages": r.page_count,
                "confidence_score": r.confidence_score,
                "structured_data": r.structured_data,
            }
        )
        assert again.confidence_score == r.confidence_score
        assert again.page_count == r.page_count
        assert again.structured_data == r.structured_data

    def test_absent_fields_stay_none(self):
        r = ProcessedResult.from_payload({"process_id": "p"})
        assert r.confidence_score is None
        assert r.page_count is None
        assert r.structured_data is None
        assert r.extracted_text is None
        assert r.extracted_text_or_empty() == ""

    def test_null_fields_stay_none(self):
        r = ProcessedResult.from_payload({"confidence_score": None, "pages": None})
        assert r.confidence_score is None
        assert r.page_count is None

    def test_integer_confidence_is_accepted(self):
        assert ProcessedResult.from_payload({"confidence_score": 1}).confidence_score == 1.0

    @pytest.mark.parametrize(
        "payload",
        [
            {"confidence_score": 1.5},
            {"confidence_score": -0.1},
            {"confidence_score": "0.9"},
            {"pages": True},
            {"pages": "3"},
            {"structured_data": [1, 2]},
            {"process_id": 42},
        ],
    )
    def test_wrong_types_are_malformed(self, payload):
        with pytest.raises(DataStudioError) as exc_info:
            ProcessedResult.from_payload(payload)
        assert exc_info.value.kind is ErrorKind.MALFORMED_PAYLOAD

    def test_non_mapping_is_malformed(self):
        with pytest.raises(DataStudioError) as exc_info:
            ProcessedResult.from_payload(["not", "an", "object"])  # type: ignore[arg-type]
        assert exc_info.value.kind is ErrorKind.MALFORMED_PAYLOAD


class TestConfidenceThreshold:
    @pytest.mark.parametrize("threshold", [-1.0, 0.0, 0.5, 1.0])
    def test_absent_score_never_meets_threshold(self, threshold):
        r = ProcessedResult.from_payload({})
        assert r.meets_confidence_threshold(threshold) is False

    def test_inclusive_comparison(self):
        r = ProcessedResult.from_payload({"confidence_score": 0.75})
        assert r.meets_confidence_threshold(0.75)
        assert not r.meets_confidence_threshold(0.76)


class TestStructuredFields:
    def test_field_lookup(self, sample_payload):
        r = ProcessedResult.from_payload(sample_payload)
        assert r.structured_field("invoice_number") == "2026-001"
        assert r.structured_field_as_str("total") == "1234.56"
        assert r.structured_field("missing") is None
        assert r.structured_field_as_str("missing") is None

    def test_lookup_without_structured_data(self):
        assert ProcessedResult.from_payload({}).structured_field("x") is None


class TestJobStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("UPLOADED", JobStatus.UPLOADED),
            ("done", JobStatus.UPLOADED),
            ("completed", JobStatus.UPLOADED),
            ("IN_PROGRESS", JobStatus.IN_PROGRESS),
            ("pending", JobStatus.IN_PROGRESS),
            ("FAILED", JobStatus.FAILED),
        ],
    )
    def test_parse(self, raw, expected):
        assert JobStatus.parse(raw) is expected

    def test_unknown_status_is_malformed(self):
        with pytest.raises(DataStudioError) as exc_info:
            JobStatus.parse("EXPLODED")
        assert exc_info.value.kind is ErrorKind.MALFORMED_PAYLOAD

    def test_terminal_states(self):
        assert JobStatus.UPLOADED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.IN_PROGRESS.is_terminal


class TestDocumentRequest:
    def test_to_job_copies_request_fields(self):
        request = DocumentRequest(
            source_path=Path("dua.pdf"),
            doc_type=DocType.EXPORT_DECLARATION,
            metadata={"orderId": "ORD-7"},
            country_code=CountryCode.FR,
        )

        job = request.to_job("proc-7")

        assert job.job_id == "proc-7"
        assert job.source_path == Path("dua.pdf")
        assert job.metadata == {"orderId": "ORD-7"}
        assert job.metadata is not request.metadata
        assert job.country_code is CountryCode.FR


class TestBatchProgress:
    def test_pending_and_percentage(self):
        p = BatchProgress(total=10, completed=4, failed=1)
        assert p.pending == 5
        assert p.completion_percentage == 50.0
        assert not p.is_complete

    def test_empty_batch_is_complete(self):
        p = BatchProgress(total=0, completed=0, failed=0)
        assert p.is_complete
        assert p.completion_percentage == 100.0


class TestBatchResult:
    def _request(self) -> DocumentRequest:
        return DocumentRequest(source_path=Path("a.pdf"), doc_type=DocType.INVOICE)

    def test_helpers(self):
        high = ProcessedResult.from_payload({"confidence_score": 0.95})
        low = ProcessedResult.from_payload({"confidence_score": 0.2})
        unknown = ProcessedResult.from_payload({})
        failure = BatchFailure(request=self._request(), error=RuntimeError("x"))
        result = BatchResult(successes=[high, low, unknown], failures={3: failure})

        assert result.total_count == 4
        assert result.success_rate == 75.0
        assert not result.all_successful
        assert result.high_confidence_results(0.9) == [high]

    def test_empty(self):
        result = BatchResult(successes=[], failures={})
        assert result.total_count == 0
        assert result.success_rate == 0.0
        assert result.all_successful
