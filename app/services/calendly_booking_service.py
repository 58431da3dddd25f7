from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from typing import Any

from app.core.config import Settings
from app.schemas.calendly import AvailableTimeSlot
from app.services.calendly_api_client import CalendlyApiClient, CalendlyApiError
from app.services.mentor_calendly_store import MentorCalendlyStore, create_mentor_calendly_store
from app.services.user_store import UserStore, create_user_store

logger = logging.getLogger(__name__)


def format_calendly_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_start_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def compute_availability_window(
    now: datetime,
    start_date: datetime | None = None,
    window_days: int = 7,
    min_lead_hours: int = 2,
) -> tuple[datetime, datetime]:
    """Return the (start, end) UTC window to query Calendly with.

    The window starts at UTC midnight of ``start_date`` (or of ``now``), but
    never earlier than ``now + min_lead_hours``.
    """
    requested = (start_date or now).astimezone(UTC)
    start = requested.replace(hour=0, minute=0, second=0, microsecond=0)
    min_start = now.astimezone(UTC) + timedelta(hours=min_lead_hours)
    if start < min_start:
        start = min_start
    return start, start + timedelta(days=window_days)


class CalendlyBookingService:
    def __init__(
        self,
        settings: Settings,
        mentor_store: MentorCalendlyStore | None = None,
        user_store: UserStore | None = None,
        client_factory: Callable[[str], CalendlyApiClient] | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.mentor_store = mentor_store or create_mentor_calendly_store(
            store_name=settings.data_store,
            mongodb_uri=settings.mongodb_uri,
            mongodb_db_name=settings.mongodb_db_name,
            mongodb_collection_name=settings.mongodb_mentor_calendly_info_collection,
            mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
        )
        self.user_store = user_store or create_user_store(settings)
        self.client_factory = client_factory or self._create_client
        self.now_provider = now_provider or (lambda: datetime.now(UTC))

    def fetch_available_times(self, mentor_id: Any, start_date: Any = None) -> dict[str, Any]:
        if not isinstance(mentor_id, str) or not mentor_id:
            return {"error": "mentorId is required"}

        try:
            calendly_info = self.mentor_store.get_calendly_info(mentor_id)
            if not calendly_info:
                return {"error": f"No calendlyInfo document found for mentorId: {mentor_id}"}

            credentials = _extract_credentials(calendly_info)
            if credentials is None:
                return {"error": "Missing access_token or event_type_uri in calendlyInfo"}
            access_token, event_type_uri = credentials

            requested_start: datetime | None = None
            if isinstance(start_date, str) and start_date.strip():
                try:
                    requested_start = parse_start_date(start_date)
                except ValueError:
                    return {"error": f"Invalid startDate: {start_date}"}

            start, end = compute_availability_window(
                now=self.now_provider(),
                start_date=requested_start,
                window_days=self.settings.availability_window_days,
                min_lead_hours=self.settings.availability_min_lead_hours,
            )
            logger.info(
                "Fetching Calendly available times mentor_id=%s start=%s end=%s",
                mentor_id,
                format_calendly_timestamp(start),
                format_calendly_timestamp(end),
            )

            client = self.client_factory(access_token)
            try:
                body = client.list_available_times(
                    event_type_uri=event_type_uri,
                    start_time=format_calendly_timestamp(start),
                    end_time=format_calendly_timestamp(end),
                )
            except CalendlyApiError as exc:
                if exc.status_code is None:
                    raise
                logger.error(
                    "Calendly API returned non-OK status_code=%s body=%s",
                    exc.status_code,
                    str(exc.details)[:2000],
                )
                return {"error": f"Calendly API error: {exc.status_code}", "details": exc.details}

            collection = body.get("collection")
            items = collection if isinstance(collection, list) else []
            slots = [
                _map_available_time_slot(item).model_dump()
                for item in items[: self.settings.availability_max_slots]
            ]
            logger.info("Fetched available time slots mentor_id=%s count=%s", mentor_id, len(slots))
            return {
                "message": f"Available times for mentorId: {mentor_id}",
                "availableTimeSlots": slots,
                "raw": body,
            }
        except Exception:
            logger.exception("Error fetching available times mentor_id=%s", mentor_id)
            return {"error": "Internal error fetching available times"}

    def schedule_invitee(self, mentor_id: Any, user_id: Any, start_time: Any) -> dict[str, Any]:
        if not isinstance(mentor_id, str) or not mentor_id:
            return {"error": "mentorId is required"}
        if not isinstance(user_id, str) or not user_id:
            return {"error": "userId is required"}
        if not isinstance(start_time, str) or not start_time:
            return {"error": "startTime is required"}

        try:
            with ThreadPoolExecutor(max_workers=2) as executor:
                calendly_info_future = executor.submit(self.mentor_store.get_calendly_info, mentor_id)
                user_future = executor.submit(self.user_store.get_user_by_id, user_id)
                calendly_info = calendly_info_future.result()
                user = user_future.result()

            if not calendly_info:
                return {"error": f"No calendlyInfo found for mentorId: {mentor_id}"}
            if not user:
                return {"error": f"No user found for userId: {user_id}"}

            credentials = _extract_credentials(calendly_info)
            if credentials is None:
                return {"error": "Missing access_token or event_type_uri in calendlyInfo"}
            access_token, event_type_uri = credentials

            email = _clean_string(user.get("email")) or ""
            if not email:
                return {"error": f"User {user_id} does not have an email on file"}

            payload = self._build_invitee_payload(
                user=user,
                email=email,
                event_type_uri=event_type_uri,
                start_time=start_time,
            )
            logger.info(
                "Scheduling Calendly invitee mentor_id=%s user_id=%s start_time=%s",
                mentor_id,
                user_id,
                start_time,
            )

            client = self.client_factory(access_token)
            try:
                body = client.create_invitee(payload)
            except CalendlyApiError as exc:
                if exc.status_code is None:
                    raise
                logger.error(
                    "Calendly invitee API returned non-OK status_code=%s body=%s",
                    exc.status_code,
                    str(exc.details)[:2000],
                )
                return {
                    "error": f"Calendly invitee API error: {exc.status_code}",
                    "details": exc.details,
                }

            resource = body.get("resource")
            if not isinstance(resource, Mapping):
                logger.error("Calendly invitee response missing resource field body=%s", body)
                return {"error": "Calendly invitee response malformed"}

            logger.info(
                "Calendly invitee scheduled mentor_id=%s user_id=%s invitee_uri=%s",
                mentor_id,
                user_id,
                resource.get("uri"),
            )
            return {"message": "Invitee scheduled successfully", "resource": dict(resource)}
        except Exception:
            logger.exception(
                "Error scheduling Calendly invitee mentor_id=%s user_id=%s",
                mentor_id,
                user_id,
            )
            return {"error": "Failed to schedule Calendly invitee"}

    def _build_invitee_payload(
        self,
        user: Mapping[str, Any],
        email: str,
        event_type_uri: str,
        start_time: str,
    ) -> dict[str, Any]:
        first_name = _clean_string(user.get("firstName"))
        last_name = _clean_string(user.get("lastName"))
        display_name = _clean_string(user.get("name")) or " ".join(
            part for part in (first_name, last_name) if part
        )
        invitee: dict[str, Any] = {
            "name": display_name or email,
            "email": email,
            "timezone": _clean_string(user.get("timezone")) or "UTC",
        }
        if first_name:
            invitee["first_name"] = first_name
        if last_name:
            invitee["last_name"] = last_name

        return {
            "event_type": event_type_uri,
            "start_time": start_time,
            "invitee": invitee,
            "location": {
                "kind": self.settings.calendly_booking_location_kind,
                "connected": True,
            },
        }

    def _create_client(self, access_token: str) -> CalendlyApiClient:
        return CalendlyApiClient(
            access_token=access_token,
            api_url=self.settings.calendly_api_url,
            timeout_seconds=self.settings.calendly_api_timeout_seconds,
            user_agent=self.settings.calendly_api_user_agent,
        )


def _extract_credentials(calendly_info: Mapping[str, Any]) -> tuple[str, str] | None:
    access_token = calendly_info.get("access_token")
    event_type_uri = calendly_info.get("event_type_uri")
    if not isinstance(access_token, str) or not access_token:
        return None
    if not isinstance(event_type_uri, str) or not event_type_uri:
        return None
    return access_token, event_type_uri


def _map_available_time_slot(item: Any) -> AvailableTimeSlot:
    if not isinstance(item, Mapping):
        return AvailableTimeSlot()
    invitees_remaining = item.get("invitees_remaining")
    if isinstance(invitees_remaining, bool) or not isinstance(invitees_remaining, int):
        invitees_remaining = None
    return AvailableTimeSlot(
        status=_slot_text(item.get("status")),
        invitees_remaining=invitees_remaining,
        start_time=_slot_text(item.get("start_time")),
        scheduling_url=_slot_text(item.get("scheduling_url")),
    )


def _slot_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _clean_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
