import io
import json
from datetime import UTC, datetime
from urllib import error, parse

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings, get_settings
from app.main import app
from app.services.calendly_booking_service import (
    CalendlyBookingService,
    compute_availability_window,
    format_calendly_timestamp,
)
from app.services.mentor_calendly_store import (
    InMemoryMentorCalendlyStore,
    clear_mentor_calendly_store_cache,
)
from app.services.user_store import InMemoryUserStore, clear_user_store_cache

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=UTC)


class _MockResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._payload = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


def _http_error(status_code: int, payload: dict[str, object]) -> error.HTTPError:
    return error.HTTPError(
        url="https://api.calendly.com/invitees",
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


@pytest.fixture(autouse=True)
def memory_stores(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_STORE", "memory")
    get_settings.cache_clear()
    clear_user_store_cache()
    clear_mentor_calendly_store_cache()
    yield
    get_settings.cache_clear()
    clear_user_store_cache()
    clear_mentor_calendly_store_cache()


def _service(
    mentor_store: InMemoryMentorCalendlyStore | None = None,
    user_store: InMemoryUserStore | None = None,
) -> CalendlyBookingService:
    return CalendlyBookingService(
        Settings(data_store="memory"),
        mentor_store=mentor_store or InMemoryMentorCalendlyStore(),
        user_store=user_store or InMemoryUserStore(),
        now_provider=lambda: NOW,
    )


def _mentor_store() -> InMemoryMentorCalendlyStore:
    store = InMemoryMentorCalendlyStore()
    store.save_calendly_info(
        "mentor-1",
        {"access_token": "T", "event_type_uri": "https://api.calendly.com/event_types/E"},
    )
    return store


def test_window_starts_two_hours_from_now_when_today_is_requested() -> None:
    start, end = compute_availability_window(now=NOW)

    assert format_calendly_timestamp(start) == "2026-10-19T11:30:00.000000Z"
    assert format_calendly_timestamp(end) == "2026-10-26T11:30:00.000000Z"


def test_window_starts_at_midnight_of_future_start_date() -> None:
    start, end = compute_availability_window(
        now=NOW,
        start_date=datetime(2026, 10, 25, 17, 45, tzinfo=UTC),
    )

    assert format_calendly_timestamp(start) == "2026-10-25T00:00:00.000000Z"
    assert format_calendly_timestamp(end) == "2026-11-01T00:00:00.000000Z"


def test_window_never_starts_in_the_past() -> None:
    start, _ = compute_availability_window(
        now=NOW,
        start_date=datetime(2026, 1, 1, tzinfo=UTC),
    )

    assert start == datetime(2026, 10, 19, 11, 30, tzinfo=UTC)


def test_fetch_available_times_without_calendly_info_skips_api(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise AssertionError("Calendly API must not be called")

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    result = _service().fetch_available_times("M")

    assert result == {"error": "No calendlyInfo document found for mentorId: M"}


def test_fetch_available_times_requires_complete_credentials() -> None:
    mentor_store = InMemoryMentorCalendlyStore()
    mentor_store.save_calendly_info("mentor-1", {"access_token": "T"})

    result = _service(mentor_store=mentor_store).fetch_available_times("mentor-1")

    assert result == {"error": "Missing access_token or event_type_uri in calendlyInfo"}


def test_fetch_available_times_queries_window_and_maps_slots(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, str] = {}
    calendly_body = {
        "collection": [
            {
                "status": "available",
                "invitees_remaining": 1,
                "start_time": "2026-10-20T15:00:00Z",
                "scheduling_url": "https://calendly.com/mentor/30min/2026-10-20T15:00:00Z",
                "extra": "ignored",
            }
        ]
    }

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["url"] = req.full_url
        captured["auth"] = req.headers.get("Authorization", "")
        captured["method"] = req.get_method()
        return _MockResponse(calendly_body)

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    result = _service(mentor_store=_mentor_store()).fetch_available_times("mentor-1")

    assert result["message"] == "Available times for mentorId: mentor-1"
    assert result["availableTimeSlots"] == [
        {
            "status": "available",
            "invitees_remaining": 1,
            "start_time": "2026-10-20T15:00:00Z",
            "scheduling_url": "https://calendly.com/mentor/30min/2026-10-20T15:00:00Z",
        }
    ]
    assert result["raw"] == calendly_body
    assert captured["auth"] == "Bearer T"
    assert captured["method"] == "GET"
    parsed_url = parse.urlparse(captured["url"])
    assert parsed_url.path == "/event_type_available_times"
    query = parse.parse_qs(parsed_url.query)
    assert query["event_type"] == ["https://api.calendly.com/event_types/E"]
    assert query["start_time"] == ["2026-10-19T11:30:00.000000Z"]
    assert query["end_time"] == ["2026-10-26T11:30:00.000000Z"]


def test_fetch_available_times_tolerates_unexpected_slot_values(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calendly_body = {
        "collection": [
            {"status": 1, "invitees_remaining": "2", "start_time": None},
            "not-a-slot",
            {"status": "available", "start_time": "2026-10-20T16:00:00Z"},
        ]
    }

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        return _MockResponse(calendly_body)

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    result = _service(mentor_store=_mentor_store()).fetch_available_times("mentor-1")

    assert result["availableTimeSlots"] == [
        {"status": "1", "invitees_remaining": None, "start_time": None, "scheduling_url": None},
        {"status": None, "invitees_remaining": None, "start_time": None, "scheduling_url": None},
        {
            "status": "available",
            "invitees_remaining": None,
            "start_time": "2026-10-20T16:00:00Z",
            "scheduling_url": None,
        },
    ]
    assert result["raw"] == calendly_body


def test_fetch_available_times_reports_calendly_error_status(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(401, {"title": "Unauthenticated"})

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    result = _service(mentor_store=_mentor_store()).fetch_available_times("mentor-1")

    assert result == {"error": "Calendly API error: 401", "details": {"title": "Unauthenticated"}}


def test_fetch_available_times_network_error_is_internal_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise error.URLError("connection refused")

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    result = _service(mentor_store=_mentor_store()).fetch_available_times("mentor-1")

    assert result == {"error": "Internal error fetching available times"}


def test_fetch_available_times_rejects_invalid_start_date() -> None:
    result = _service(mentor_store=_mentor_store()).fetch_available_times(
        "mentor-1",
        start_date="next tuesday",
    )

    assert result == {"error": "Invalid startDate: next tuesday"}


@pytest.mark.parametrize(
    ("mentor_id", "user_id", "start_time", "expected_error"),
    [
        ("", "user-1", "2026-10-20T15:00:00Z", "mentorId is required"),
        ("mentor-1", None, "2026-10-20T15:00:00Z", "userId is required"),
        ("mentor-1", "user-1", 123, "startTime is required"),
    ],
)
def test_schedule_invitee_validates_inputs(
    mentor_id: object,
    user_id: object,
    start_time: object,
    expected_error: str,
) -> None:
    assert _service().schedule_invitee(mentor_id, user_id, start_time) == {"error": expected_error}


def test_schedule_invitee_requires_known_user() -> None:
    result = _service(mentor_store=_mentor_store()).schedule_invitee(
        "mentor-1",
        "missing-user",
        "2026-10-20T15:00:00Z",
    )

    assert result == {"error": "No user found for userId: missing-user"}


def test_schedule_invitee_requires_user_email() -> None:
    user_store = InMemoryUserStore()
    user_store.save_user({"_id": "user-1", "name": "No Email"})

    result = _service(mentor_store=_mentor_store(), user_store=user_store).schedule_invitee(
        "mentor-1",
        "user-1",
        "2026-10-20T15:00:00Z",
    )

    assert result == {"error": "User user-1 does not have an email on file"}


def test_schedule_invitee_posts_booking_and_returns_resource(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, object] = {}
    user_store = InMemoryUserStore()
    user_store.save_user(
        {"_id": "user-1", "email": "jane@example.com", "firstName": "Jane", "lastName": "Doe"}
    )

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["url"] = req.full_url
        captured["method"] = req.get_method()
        captured["payload"] = json.loads(req.data.decode("utf-8"))
        return _MockResponse({"resource": {"uri": "https://api.calendly.com/invitees/INV-1"}})

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    result = _service(mentor_store=_mentor_store(), user_store=user_store).schedule_invitee(
        "mentor-1",
        "user-1",
        "2026-10-20T15:00:00Z",
    )

    assert result == {
        "message": "Invitee scheduled successfully",
        "resource": {"uri": "https://api.calendly.com/invitees/INV-1"},
    }
    assert captured["url"] == "https://api.calendly.com/invitees"
    assert captured["method"] == "POST"
    assert captured["payload"] == {
        "event_type": "https://api.calendly.com/event_types/E",
        "start_time": "2026-10-20T15:00:00Z",
        "invitee": {
            "name": "Jane Doe",
            "email": "jane@example.com",
            "timezone": "UTC",
            "first_name": "Jane",
            "last_name": "Doe",
        },
        "location": {"kind": "zoom_conference", "connected": True},
    }


def test_schedule_invitee_falls_back_to_email_for_name(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, object] = {}
    user_store = InMemoryUserStore()
    user_store.save_user({"_id": "user-1", "email": "jane@example.com", "timezone": "Europe/Madrid"})

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["payload"] = json.loads(req.data.decode("utf-8"))
        return _MockResponse({"resource": {"uri": "https://api.calendly.com/invitees/INV-2"}})

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)

    _service(mentor_store=_mentor_store(), user_store=user_store).schedule_invitee(
        "mentor-1",
        "user-1",
        "2026-10-20T15:00:00Z",
    )

    invitee = captured["payload"]["invitee"]  # type: ignore[index]
    assert invitee == {
        "name": "jane@example.com",
        "email": "jane@example.com",
        "timezone": "Europe/Madrid",
    }


def test_schedule_invitee_reports_calendly_error_and_malformed_response(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    user_store = InMemoryUserStore()
    user_store.save_user({"_id": "user-1", "email": "jane@example.com"})
    responses = iter(
        [
            _http_error(400, {"message": "Slot unavailable"}),
            _MockResponse({"unexpected": True}),
        ]
    )

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        outcome = next(responses)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr("app.services.calendly_api_client.request.urlopen", fake_urlopen)
    service = _service(mentor_store=_mentor_store(), user_store=user_store)

    assert service.schedule_invitee("mentor-1", "user-1", "2026-10-20T15:00:00Z") == {
        "error": "Calendly invitee API error: 400",
        "details": {"message": "Slot unavailable"},
    }
    assert service.schedule_invitee("mentor-1", "user-1", "2026-10-20T15:00:00Z") == {
        "error": "Calendly invitee response malformed",
    }


def test_available_times_endpoint_accepts_callable_envelope() -> None:
    client = TestClient(app)

    response = client.post("/availableTimes", json={"data": {"mentorId": "M"}})

    assert response.status_code == 200
    assert response.json() == {"error": "No calendlyInfo document found for mentorId: M"}


def test_schedule_endpoint_validates_inputs() -> None:
    client = TestClient(app)

    response = client.post("/scheduleCalendlyInvitee", json={"mentorId": "mentor-1"})

    assert response.status_code == 200
    assert response.json() == {"error": "userId is required"}


@pytest.mark.parametrize("body", [[{"mentorId": "M"}], "mentor-1", None])
def test_callable_endpoints_answer_error_shape_for_non_object_body(body: object) -> None:
    client = TestClient(app)

    available = client.post("/availableTimes", json=body)
    scheduled = client.post("/scheduleCalendlyInvitee", json=body)

    assert available.status_code == 200
    assert available.json() == {"error": "mentorId is required"}
    assert scheduled.status_code == 200
    assert scheduled.json() == {"error": "mentorId is required"}
