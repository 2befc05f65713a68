"""Webhook event dispatch for DataStudio notifications.

The service pushes two events:

- ``document.ready_for_review``: processed by the AI, awaiting human review
- ``document.completed``: processing fully completed, including review

A ``WebhookDispatcher`` maps an event type to one handler. It knows nothing
about jobs; ``install_result_handlers`` wires it to a
``PendingResultRegistry`` so waiting callers are released when an event
arrives.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from datastudio_client.errors import DataStudioError, ErrorKind
from datastudio_client.pending import PendingResultRegistry
from datastudio_client.types import ProcessedResult

logger = logging.getLogger(__name__)

EVENT_READY_FOR_REVIEW = "document.ready_for_review"
EVENT_COMPLETED = "document.completed"

WebhookHandler = Callable[[dict[str, Any]], None]


def parse_payload(raw_payload: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    """Parse a webhook body into a JSON object."""
    if isinstance(raw_payload, Mapping):
        return dict(raw_payload)
    try:
        payload = json.loads(raw_payload)
    except (TypeError, ValueError) as e:
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, f"Webhook payload is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise DataStudioError(ErrorKind.MALFORMED_PAYLOAD, "Webhook payload must be a JSON object")
    return payload


class WebhookDispatcher:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, WebhookHandler] = {}

    def register_handler(self, event_type: str, handler: WebhookHandler) -> WebhookDispatcher:
        """Set the handler for ``event_type``, replacing any previous one."""
        with self._lock:
            self._handlers[event_type] = handler
        logger.info("Registered handler for event: %s", event_type)
        return self

    def on_ready_for_review(self, handler: WebhookHandler) -> WebhookDispatcher:
        return self.register_handler(EVENT_READY_FOR_REVIEW, handler)

    def on_completed(self, handler: WebhookHandler) -> WebhookDispatcher:
        return self.register_handler(EVENT_COMPLETED, handler)

    def has_handler(self, event_type: str) -> bool:
        with self._lock:
            return event_type in self._handlers

    def remove_handler(self, event_type: str) -> None:
        with self._lock:
            self._handlers.pop(event_type, None)
        logger.info("Removed handler for event: %s", event_type)

    def clear_handlers(self) -> None:
        with self._lock:
            self._handlers.clear()
        logger.info("Cleared all webhook handlers")

    def dispatch(self, event_type: str, raw_payload: str | bytes | Mapping[str, Any]) -> bool:
        """Run the handler for ``event_type`` on the calling thread.

        Returns False when no handler is registered; unknown event types are
        not an error.

        Raises:
            DataStudioError: ``MALFORMED_PAYLOAD`` if the body is not a JSON
                object; ``WEBHOOK_PROCESSING`` (with the handler's exception as
                ``__cause__``) if the handler raises.
        """
        logger.info("Received webhook event: %s", event_type)
        payload = parse_payload(raw_payload)

        with self._lock:
            handler = self._handlers.get(event_type)
        if handler is None:
            logger.warning("No handler registered for event: %s", event_type)
            return False

        try:
            handler(payload)
        except Exception as e:
            logger.error("Error processing webhook event %s: %s", event_type, e, exc_info=True)
            raise DataStudioError(
                ErrorKind.WEBHOOK_PROCESSING,
                f"Failed to process webhook: {event_type}",
                event_type=event_type,
                job_id=_job_id_of(payload),
            ) from e

        logger.info("Successfully processed webhook event: %s", event_type)
        return True


def _job_id_of(payload: Mapping[str, Any]) -> str | None:
    pid = payload.get("process_id")
    return str(pid) if pid else None


def install_result_handlers(
    dispatcher: WebhookDispatcher,
    registry: PendingResultRegistry,
    *,
    on_result: Callable[[str, ProcessedResult], None] | None = None,
) -> WebhookDispatcher:
    """Release registry waiters when a DataStudio event arrives.

    A payload that names its job only ever resolves that job's waiter; when
    nobody waits on it the event is dropped. Payloads without a
    ``process_id`` resolve the oldest waiter.
    """

    def _make(event_type: str) -> WebhookHandler:
        def _handle(payload: dict[str, Any]) -> None:
            result = ProcessedResult.from_payload(payload)
            if on_result is not None:
                on_result(event_type, result)
            if result.job_id:
                registry.resolve(result.job_id, result)
            else:
                registry.resolve_any(result)

        return _handle

    dispatcher.on_ready_for_review(_make(EVENT_READY_FOR_REVIEW))
    dispatcher.on_completed(_make(EVENT_COMPLETED))
    return dispatcher
