from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import uvicorn

from datastudio_client.app import create_app
from datastudio_client.batch import BatchCoordinator
from datastudio_client.cli import build_parser
from datastudio_client.config import DataStudioConfig
from datastudio_client.errors import DataStudioError, describe_error
from datastudio_client.logging_config import setup_logging
from datastudio_client.pending import PendingResultRegistry
from datastudio_client.polling import DocumentProcessor
from datastudio_client.remote import DataStudioClient
from datastudio_client.types import (
    BatchProgress,
    BatchResult,
    CountryCode,
    DocType,
    DocumentRequest,
    ProcessedResult,
)
from datastudio_client.webhooks import (
    EVENT_COMPLETED,
    EVENT_READY_FOR_REVIEW,
    WebhookDispatcher,
    install_result_handlers,
)

logger = logging.getLogger("datastudio_client")


def _result_dict(result: ProcessedResult) -> dict[str, Any]:
    return {
        "process_id": result.job_id,
        "status": result.status,
        "pages": result.page_count,
        "confidence_score": result.confidence_score,
        "url": result.result_url,
        "structured_data": result.structured_data,
        "observed_at": result.observed_at.isoformat(),
    }


def _print_event(event_type: str, result: ProcessedResult) -> None:
    print(f"\n========== WEBHOOK: {event_type} ==========")
    print(json.dumps(_result_dict(result), indent=2, default=str))
    print("=" * (30 + len(event_type)) + "\n")


def _print_progress(progress: BatchProgress) -> None:
    logger.info(
        "Progress: %d/%d done (%d failed, %.0f%%)",
        progress.completed + progress.failed,
        progress.total,
        progress.failed,
        progress.completion_percentage,
    )


def _print_batch(result: BatchResult) -> None:
    for r in result.successes:
        print(json.dumps(_result_dict(r), default=str))
    for index, failure in sorted(result.failures.items()):
        print(f"\n[{index}] {failure.request.source_path}", file=sys.stderr)
        print(describe_error(failure.error), file=sys.stderr)
    print(
        f"\nSuccessful: {len(result.successes)}  Failed: {len(result.failures)}"
        f"  Success rate: {result.success_rate:.1f}%"
    )


def _webhook_subscriptions(cfg: DataStudioConfig) -> list[tuple[str, str]]:
    if not cfg.webhook_url:
        return []
    return [
        (EVENT_READY_FOR_REVIEW, f"{cfg.webhook_url}/ready"),
        (EVENT_COMPLETED, f"{cfg.webhook_url}/completed"),
    ]


def _listener(cfg: DataStudioConfig, app: Any) -> uvicorn.Server:
    config = uvicorn.Config(app, host="0.0.0.0", port=cfg.webhook_port, log_config=None)
    return uvicorn.Server(config)


async def _submit(args: argparse.Namespace, cfg: DataStudioConfig, client: DataStudioClient) -> int:
    metadata = dict(args.meta)
    metadata.setdefault("processed_by", cfg.user_id)
    requests = [
        DocumentRequest(
            source_path=Path(f),
            doc_type=DocType(args.doc_type),
            metadata=metadata,
            country_code=CountryCode(args.country),
        )
        for f in args.files
    ]

    if args.wait == "none":
        processor = DocumentProcessor(client, user_id=cfg.user_id, poll_settings=cfg.poll)
        for req in requests:
            upload = await processor.submit(req)
            print(f"{req.source_path}\t{upload.job_id}\t{upload.status.value}")
        return 0

    concurrency = args.concurrency if args.concurrency and args.concurrency > 0 else cfg.max_concurrency

    if args.wait == "poll":
        async with BatchCoordinator(client, max_concurrency=concurrency, poll_settings=cfg.poll) as coordinator:
            result = await coordinator.process_documents(
                requests, user_id=cfg.user_id, on_progress=_print_progress
            )
        _print_batch(result)
        return 0 if result.all_successful else 2

    if not cfg.webhook_url:
        raise ValueError("DATASTUDIO_WEBHOOK_URL is required for --wait webhook")

    registry = PendingResultRegistry()
    dispatcher = install_result_handlers(WebhookDispatcher(), registry, on_result=_print_event)
    server = _listener(cfg, create_app(dispatcher, registry=registry, waiter_max_age=cfg.waiter_max_age))
    serve_task = asyncio.create_task(server.serve())
    timeout = args.timeout if args.timeout and args.timeout > 0 else cfg.webhook_timeout
    try:
        async with BatchCoordinator(
            client,
            max_concurrency=concurrency,
            wait_mode="webhook",
            registry=registry,
            webhook_timeout=timeout,
        ) as coordinator:
            result = await coordinator.process_documents(
                requests, user_id=cfg.user_id, on_progress=_print_progress
            )
    finally:
        server.should_exit = True
        await serve_task
    _print_batch(result)
    return 0 if result.all_successful else 2


async def _serve(cfg: DataStudioConfig) -> int:
    registry = PendingResultRegistry()
    dispatcher = install_result_handlers(WebhookDispatcher(), registry, on_result=_print_event)
    server = _listener(cfg, create_app(dispatcher, registry=registry, waiter_max_age=cfg.waiter_max_age))
    logger.info("Listening for events on port %d:", cfg.webhook_port)
    logger.info("  - POST /webhooks/ready     -> %s", EVENT_READY_FOR_REVIEW)
    logger.info("  - POST /webhooks/completed -> %s", EVENT_COMPLETED)
    await server.serve()
    return 0


async def _amain() -> int:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(level=args.log_level.upper())

    try:
        cfg = DataStudioConfig.from_env()
        cfg.validate()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        print("Set DATASTUDIO_API_KEY and DATASTUDIO_BASE_URL (and DATASTUDIO_WEBHOOK_URL for webhooks).", file=sys.stderr)
        return 1
    setup_logging(level=args.log_level.upper(), json_logs=cfg.log_json or None)

    if args.command == "serve":
        return await _serve(cfg)

    try:
        async with DataStudioClient(
            api_key=cfg.api_key,
            base_url=cfg.base_url,
            environment=cfg.environment,
            webhooks=_webhook_subscriptions(cfg),
            timeout=cfg.http_timeout,
        ) as client:
            if args.command == "submit":
                return await _submit(args, cfg, client)

            processor = DocumentProcessor(client, user_id=cfg.user_id, poll_settings=cfg.poll)
            if args.command == "status":
                upload = await processor.check_status(args.job_id)
                print(f"{upload.job_id}\t{upload.status.value}")
                return 0
            result = await processor.get_result(args.job_id)
            print(json.dumps(_result_dict(result), indent=2, default=str))
            return 0
    except DataStudioError as e:
        logger.error("DataStudio error: %s", e.context())
        print("\n" + describe_error(e), file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
