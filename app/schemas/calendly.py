from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CalendlyEventType(StrEnum):
    invitee_created = "invitee.created"
    invitee_canceled = "invitee.canceled"
    invitee_rescheduled = "invitee.rescheduled"
    invitee_payment_created = "invitee_payment.created"
    invitee_no_show_created = "invitee_no_show.created"
    invitee_no_show_deleted = "invitee_no_show.deleted"

    @classmethod
    def parse(cls, value: Any) -> "CalendlyEventType | None":
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


class ScheduledCallStatus(StrEnum):
    active = "active"
    canceled = "canceled"
    rescheduled = "rescheduled"


class CalendlyWebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str | None = None
    document_id: str | None = Field(default=None, serialization_alias="documentId")
    correlation_id: str = Field(serialization_alias="correlationId")


class AvailableTimeSlot(BaseModel):
    status: str | None = None
    invitees_remaining: int | None = None
    start_time: str | None = None
    scheduling_url: str | None = None

