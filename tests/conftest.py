"""Shared test fixtures for the datastudio-client test suite."""

from __future__ import annotations

import pytest


@pytest.fixture
def test_user_id() -> str:
    return "test-user@example.com"


@pytest.fixture
def sample_payload() -> dict:
    return {
        "process_id": "proc-123",
        "extracted_text": "INVOICE 2026-001",
        "pages": 3,
        "confidence_score": 0.8734,
        "url": "https://results.example.com/proc-123.json",
        "status": "completed",
        "structured_data": {
            "invoice_number": "2026-001",
            "total": 1234.56,
            "lines": [{"sku": "A1", "qty": 2}],
        },
    }
