from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.services.calendly_booking_service import CalendlyBookingService
from app.services.calendly_webhook_service import CalendlyWebhookService

router = APIRouter(tags=["calendly"])

# Non-POST methods still reach the service so they get its 405 body.
WEBHOOK_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/calendlyWebhook", methods=WEBHOOK_METHODS)
async def receive_calendly_webhook(request: Request) -> JSONResponse:
    raw_body = await request.body()
    settings = get_settings()
    service = CalendlyWebhookService(settings)
    result = service.handle_request(
        method=request.method,
        headers=dict(request.headers),
        body=raw_body,
    )
    return JSONResponse(status_code=result.status_code, content=result.body)


# Callable-style endpoints: business errors come back as 200 with an "error" key.
@router.post("/availableTimes")
def available_times(payload: Any = Body(default=None)) -> dict[str, Any]:
    data = _unwrap_callable_data(payload)
    service = CalendlyBookingService(get_settings())
    return service.fetch_available_times(
        mentor_id=data.get("mentorId"),
        start_date=data.get("startDate"),
    )


@router.post("/scheduleCalendlyInvitee")
def schedule_calendly_invitee(payload: Any = Body(default=None)) -> dict[str, Any]:
    data = _unwrap_callable_data(payload)
    service = CalendlyBookingService(get_settings())
    return service.schedule_invitee(
        mentor_id=data.get("mentorId"),
        user_id=data.get("userId"),
        start_time=data.get("startTime"),
    )


def _unwrap_callable_data(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        return {}
    data = payload.get("data")
    if isinstance(data, Mapping):
        return data
    return payload
