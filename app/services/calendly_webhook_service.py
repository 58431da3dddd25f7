from __future__ import annotations

import json
import logging
import secrets
import string
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.core.config import Settings
from app.schemas.calendly import CalendlyEventType, CalendlyWebhookResponse
from app.services.call_record_mapper import CallRecordMapper, build_cancellation_patch
from app.services.identity_directory import create_identity_directory
from app.services.scheduled_call_store import ScheduledCallStore, create_scheduled_call_store
from app.services.user_lookup import UserLookupService, is_valid_email
from app.services.user_store import create_user_store
from app.services.webhook_validation import (
    extract_signature,
    is_valid_calendly_signature,
    validate_webhook_payload,
)

logger = logging.getLogger(__name__)

_SENSITIVE_HEADERS = frozenset({"calendly-webhook-signature", "authorization"})
_CORRELATION_ALPHABET = string.digits + string.ascii_lowercase


class InvalidWebhookBody(Exception):
    pass


@dataclass
class WebhookHttpResult:
    status_code: int
    body: dict[str, Any]


@dataclass
class ProcessingOutcome:
    success: bool
    reason: str | None = None
    document_id: str | None = None


class CalendlyWebhookService:
    """Turns Calendly invitee webhooks into scheduled call documents.

    Business-rule failures (unknown user, duplicate event, unsupported event
    type) answer HTTP 200 with ``success: false`` so Calendly does not retry
    them. Only malformed requests get a 4xx and only unexpected errors a 500.
    """

    def __init__(
        self,
        settings: Settings,
        store: ScheduledCallStore | None = None,
        user_lookup: UserLookupService | None = None,
        mapper: CallRecordMapper | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or create_scheduled_call_store(
            store_name=settings.data_store,
            mongodb_uri=settings.mongodb_uri,
            mongodb_db_name=settings.mongodb_db_name,
            mongodb_collection_name=settings.mongodb_scheduled_calls_collection,
            mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
        )
        self.user_lookup = user_lookup or UserLookupService(
            user_store=create_user_store(settings),
            identity_directory=create_identity_directory(settings),
        )
        self.mapper = mapper or CallRecordMapper(self.user_lookup)

    def handle_request(
        self,
        method: str,
        headers: Mapping[str, Any],
        body: bytes | str | Mapping[str, Any],
    ) -> WebhookHttpResult:
        correlation_id = generate_correlation_id()
        try:
            return self._handle_request(
                method=method,
                headers=headers,
                body=body,
                correlation_id=correlation_id,
            )
        except Exception:
            logger.exception("Unexpected error processing webhook correlation_id=%s", correlation_id)
            return WebhookHttpResult(
                status_code=500,
                body={"error": "Internal server error", "correlationId": correlation_id},
            )

    def _handle_request(
        self,
        method: str,
        headers: Mapping[str, Any],
        body: bytes | str | Mapping[str, Any],
        correlation_id: str,
    ) -> WebhookHttpResult:
        logger.info(
            "Calendly webhook received correlation_id=%s method=%s headers=%s",
            correlation_id,
            method,
            sanitize_headers(headers),
        )

        if method.upper() != "POST":
            logger.warning("Invalid HTTP method correlation_id=%s method=%s", correlation_id, method)
            return WebhookHttpResult(status_code=405, body={"error": "Method not allowed"})

        if not self._has_valid_signature(headers=headers, body=body, correlation_id=correlation_id):
            return WebhookHttpResult(status_code=401, body={"error": "Invalid webhook signature"})

        try:
            payload, event_type_name = unwrap_webhook_body(parse_webhook_body(body))
        except InvalidWebhookBody:
            logger.warning("Failed to parse webhook payload correlation_id=%s", correlation_id)
            return WebhookHttpResult(status_code=400, body={"error": "Invalid JSON payload"})

        if not validate_webhook_payload(payload):
            logger.warning("Invalid webhook payload structure correlation_id=%s", correlation_id)
            return WebhookHttpResult(status_code=400, body={"error": "Invalid payload structure"})

        logger.info(
            "Processing Calendly webhook event correlation_id=%s event_type=%s invitee_email=%s",
            correlation_id,
            event_type_name,
            payload.get("email"),
        )
        outcome = self.process_event(
            payload=payload,
            event_type_name=event_type_name,
            correlation_id=correlation_id,
        )

        if outcome.success:
            logger.info(
                "Webhook processed correlation_id=%s event_type=%s document_id=%s",
                correlation_id,
                event_type_name,
                outcome.document_id,
            )
            response = CalendlyWebhookResponse(
                success=True,
                message="Webhook processed successfully",
                document_id=outcome.document_id,
                correlation_id=correlation_id,
            )
        else:
            logger.warning(
                "Webhook processing failed correlation_id=%s event_type=%s reason=%s",
                correlation_id,
                event_type_name,
                outcome.reason,
            )
            response = CalendlyWebhookResponse(
                success=False,
                message=outcome.reason,
                correlation_id=correlation_id,
            )
        return WebhookHttpResult(
            status_code=200,
            body=response.model_dump(by_alias=True, exclude_none=True),
        )

    def process_event(
        self,
        payload: Mapping[str, Any],
        event_type_name: str,
        correlation_id: str,
    ) -> ProcessingOutcome:
        invitee_email = payload.get("email")
        if not is_valid_email(invitee_email):
            return ProcessingOutcome(success=False, reason="Invalid email format")

        user_result = self.user_lookup.get_user_id_by_email(invitee_email)
        if user_result.is_failed:
            logger.error(
                "User lookup errored correlation_id=%s email=%s error=%s",
                correlation_id,
                invitee_email,
                user_result.error,
            )
            return ProcessingOutcome(success=False, reason="User not found")
        if not user_result.is_found or not user_result.value:
            logger.info(
                "User not found for email, skipping webhook correlation_id=%s email=%s",
                correlation_id,
                invitee_email,
            )
            return ProcessingOutcome(success=False, reason="User not found")

        user_id = user_result.value
        event_type = CalendlyEventType.parse(event_type_name)
        if event_type == CalendlyEventType.invitee_created:
            return self._handle_invitee_created(
                user_id=user_id,
                payload=payload,
                event_type=event_type,
                correlation_id=correlation_id,
            )
        if event_type == CalendlyEventType.invitee_canceled:
            return self._handle_invitee_canceled(
                user_id=user_id,
                payload=payload,
                correlation_id=correlation_id,
            )

        logger.info(
            "Unsupported event type, ignoring correlation_id=%s event_type=%s",
            correlation_id,
            event_type_name,
        )
        return ProcessingOutcome(success=False, reason="Unsupported event type")

    def _handle_invitee_created(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        event_type: CalendlyEventType,
        correlation_id: str,
    ) -> ProcessingOutcome:
        event_uri = payload["scheduled_event"]["uri"]
        try:
            already_exists = self.store.exists(user_id, event_uri)
        except Exception as exc:
            # Treated as absent.
            logger.error(
                "Existence check errored correlation_id=%s user_id=%s event_uri=%s error=%s",
                correlation_id,
                user_id,
                event_uri,
                exc,
            )
            already_exists = False
        if already_exists:
            logger.info(
                "Scheduled call already exists, skipping creation correlation_id=%s user_id=%s event_uri=%s",
                correlation_id,
                user_id,
                event_uri,
            )
            return ProcessingOutcome(success=False, reason="Call already exists")

        try:
            host_user_id = self._resolve_host_user_id(payload, correlation_id)
            record = self.mapper.map_to_record(payload, event_type, host_user_id)
            document_id = self.store.create(user_id, record)
            logger.info(
                "Created scheduled call correlation_id=%s user_id=%s document_id=%s",
                correlation_id,
                user_id,
                document_id,
            )
            if host_user_id and host_user_id != user_id:
                host_document_id = self.store.create(host_user_id, record)
                logger.info(
                    "Created scheduled call for host correlation_id=%s host_user_id=%s document_id=%s",
                    correlation_id,
                    host_user_id,
                    host_document_id,
                )
            else:
                logger.warning(
                    "Host not resolved, skipping host scheduled call correlation_id=%s",
                    correlation_id,
                )
        except Exception:
            logger.exception(
                "Error handling invitee.created event correlation_id=%s user_id=%s",
                correlation_id,
                user_id,
            )
            return ProcessingOutcome(success=False, reason="Failed to create scheduled call")

        return ProcessingOutcome(success=True, document_id=document_id)

    def _handle_invitee_canceled(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        correlation_id: str,
    ) -> ProcessingOutcome:
        event_uri = payload["scheduled_event"]["uri"]
        patch = build_cancellation_patch(payload)
        try:
            updated = self.store.update(user_id, event_uri, patch)
        except Exception:
            logger.exception(
                "Error handling invitee.canceled event correlation_id=%s user_id=%s",
                correlation_id,
                user_id,
            )
            return ProcessingOutcome(success=False, reason="Failed to cancel scheduled call")

        if not updated:
            logger.warning(
                "No scheduled call found to cancel correlation_id=%s user_id=%s event_uri=%s",
                correlation_id,
                user_id,
                event_uri,
            )
            return ProcessingOutcome(success=False, reason="Failed to update scheduled call")

        self._cancel_host_copy(user_id, payload, patch, correlation_id)
        return ProcessingOutcome(success=True)

    def _cancel_host_copy(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        patch: Mapping[str, Any],
        correlation_id: str,
    ) -> None:
        host_user_id = self._resolve_host_user_id(payload, correlation_id)
        if not host_user_id or host_user_id == user_id:
            return
        event_uri = payload["scheduled_event"]["uri"]
        try:
            host_updated = self.store.update(host_user_id, event_uri, patch)
        except Exception as exc:
            logger.error(
                "Host cancellation update errored correlation_id=%s host_user_id=%s error=%s",
                correlation_id,
                host_user_id,
                exc,
            )
            return
        logger.info(
            "Host cancellation update correlation_id=%s host_user_id=%s updated=%s",
            correlation_id,
            host_user_id,
            host_updated,
        )

    def _resolve_host_user_id(self, payload: Mapping[str, Any], correlation_id: str) -> str | None:
        scheduled_event = payload.get("scheduled_event")
        if not isinstance(scheduled_event, Mapping):
            return None
        host_result = self.user_lookup.resolve_host_user_id(scheduled_event.get("event_memberships"))
        if host_result.is_failed:
            logger.error(
                "Host lookup errored correlation_id=%s error=%s",
                correlation_id,
                host_result.error,
            )
            return None
        return host_result.value if host_result.is_found else None

    def _has_valid_signature(
        self,
        headers: Mapping[str, Any],
        body: bytes | str | Mapping[str, Any],
        correlation_id: str,
    ) -> bool:
        signing_key = self.settings.calendly_webhook_signing_key
        if not self.settings.calendly_webhook_signature_validation_enabled or not signing_key:
            logger.info("Skipping webhook signature validation correlation_id=%s", correlation_id)
            return True

        signature = extract_signature(headers)
        if isinstance(body, Mapping):
            raw_body = json.dumps(body).encode("utf-8")
        elif isinstance(body, str):
            raw_body = body.encode("utf-8")
        else:
            raw_body = body
        if signature and is_valid_calendly_signature(raw_body, signature, signing_key):
            return True

        logger.warning(
            "Invalid webhook signature correlation_id=%s has_signature=%s",
            correlation_id,
            bool(signature),
        )
        return False


def parse_webhook_body(body: bytes | str | Mapping[str, Any]) -> Any:
    if isinstance(body, Mapping):
        return dict(body)
    try:
        return json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidWebhookBody("Request body must be valid JSON.") from exc


def unwrap_webhook_body(body: Any) -> tuple[Any, str]:
    """Split a parsed body into (payload, event type name).

    Enveloped bodies look like ``{"event": ..., "payload": {...}}``. A bare
    payload gets its event type from its ``status``.
    """
    if isinstance(body, Mapping) and body.get("event") and body.get("payload"):
        return body["payload"], str(body["event"])

    status = body.get("status") if isinstance(body, Mapping) else None
    if status == "canceled":
        return body, CalendlyEventType.invitee_canceled.value
    return body, CalendlyEventType.invitee_created.value


def generate_correlation_id() -> str:
    suffix = "".join(secrets.choice(_CORRELATION_ALPHABET) for _ in range(9))
    return f"calendly_{int(time.time() * 1000)}_{suffix}"


def sanitize_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    return {
        header_name: value
        for header_name, value in headers.items()
        if header_name.lower() not in _SENSITIVE_HEADERS
    }
