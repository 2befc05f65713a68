from __future__ import annotations

import argparse

from datastudio_client.types import CountryCode, DocType


def _key_value(raw: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {raw!r}")
    return key.strip(), value.strip()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="datastudio",
        description="Submit documents to DataStudio and collect results via polling or webhooks",
    )
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")

    sub = p.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Upload one or more PDF documents")
    submit.add_argument("files", nargs="+", help="Path(s) to PDF files")
    submit.add_argument(
        "--doc-type",
        choices=[d.value for d in DocType],
        default=DocType.EXPORT_DECLARATION.value,
        help="Document type (default: EXPORT_DECLARATION)",
    )
    submit.add_argument(
        "--country",
        choices=[c.value for c in CountryCode],
        default=CountryCode.ES.value,
        help="Country code of the documents (default: ES)",
    )
    submit.add_argument(
        "--meta",
        action="append",
        type=_key_value,
        default=[],
        metavar="KEY=VALUE",
        help="Metadata attached to every document (repeatable)",
    )
    submit.add_argument(
        "--wait",
        choices=["poll", "webhook", "none"],
        default="poll",
        help="How to wait for results: poll status, wait for webhooks, or return after upload",
    )
    submit.add_argument(
        "--concurrency",
        type=int,
        default=0,
        help="Override DATASTUDIO_MAX_CONCURRENCY",
    )
    submit.add_argument(
        "--timeout",
        type=float,
        default=0,
        help="Override DATASTUDIO_WEBHOOK_TIMEOUT (seconds, webhook mode only)",
    )

    status = sub.add_parser("status", help="Show the processing status of a document")
    status.add_argument("job_id")

    result = sub.add_parser("result", help="Fetch the result of a processed document")
    result.add_argument("job_id")

    sub.add_parser("serve", help="Run only the webhook listener and print incoming events")
    return p
