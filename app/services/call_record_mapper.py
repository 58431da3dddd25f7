from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from app.schemas.calendly import CalendlyEventType, ScheduledCallStatus
from app.services.user_lookup import UserLookupService, extract_host_uri

logger = logging.getLogger(__name__)


class CallRecordMappingError(Exception):
    pass


def derive_status(event_type: CalendlyEventType | None, payload_status: Any) -> str:
    if event_type == CalendlyEventType.invitee_created:
        return ScheduledCallStatus.active.value
    if event_type == CalendlyEventType.invitee_canceled:
        return ScheduledCallStatus.canceled.value
    if event_type == CalendlyEventType.invitee_rescheduled:
        return ScheduledCallStatus.rescheduled.value
    if isinstance(payload_status, str) and payload_status:
        return payload_status
    return ScheduledCallStatus.active.value


def build_cancellation_patch(payload: Mapping[str, Any]) -> dict[str, Any]:
    patch: dict[str, Any] = {"status": ScheduledCallStatus.canceled.value}
    cancellation = payload.get("cancellation")
    if isinstance(cancellation, Mapping):
        patch["canceledAt"] = parse_timestamp(cancellation.get("created_at"))
        patch["canceledBy"] = cancellation.get("canceled_by")
        patch["cancellationReason"] = cancellation.get("reason")
    return patch


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(UTC)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed
    return datetime.now(UTC)


class CallRecordMapper:
    def __init__(self, user_lookup: UserLookupService) -> None:
        self.user_lookup = user_lookup

    def map_to_record(
        self,
        payload: Mapping[str, Any],
        event_type: CalendlyEventType | None,
        host_user_id: str | None = None,
    ) -> dict[str, Any]:
        scheduled_event = payload.get("scheduled_event")
        if not isinstance(scheduled_event, Mapping):
            raise CallRecordMappingError("Missing scheduled_event in webhook payload")

        host_name = ""
        if host_user_id and host_user_id.strip():
            host = self.user_lookup.find_user_by_id(host_user_id) or {}
            host_name = host.get("name") or host.get("displayName") or ""
            logger.info(
                "Resolved host name host_user_id=%s has_host_data=%s",
                host_user_id,
                bool(host),
            )

        location = scheduled_event.get("location")
        join_url = location.get("join_url") if isinstance(location, Mapping) else None

        record = {
            "calendlyEventUri": scheduled_event.get("uri"),
            "cancelUrl": payload.get("cancel_url"),
            "createdAt": parse_timestamp(payload.get("created_at")),
            "endTime": scheduled_event.get("end_time"),
            "eventType": scheduled_event.get("event_type"),
            "inviteeEmail": payload.get("email"),
            "inviteeName": payload.get("name"),
            "mentorUri": extract_host_uri(scheduled_event.get("event_memberships")),
            "mentorName": host_name,
            "rescheduleUrl": payload.get("reschedule_url"),
            "rescheduled": bool(payload.get("rescheduled", False)),
            "startTime": scheduled_event.get("start_time"),
            "status": derive_status(event_type, payload.get("status")),
            "timezone": payload.get("timezone"),
        }
        if join_url:
            record["joinUrl"] = join_url
        return record
