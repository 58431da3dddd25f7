import json
from collections.abc import Mapping
from typing import Any
from urllib import error, parse, request


class CalendlyApiError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class CalendlyApiClient:
    def __init__(
        self,
        access_token: str,
        api_url: str = "https://api.calendly.com",
        timeout_seconds: float = 15.0,
        user_agent: str = "ConnectlySchedulingFunctions/1.0",
    ) -> None:
        self.access_token = access_token
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent

    def list_available_times(
        self,
        event_type_uri: str,
        start_time: str,
        end_time: str,
    ) -> dict[str, Any]:
        query = parse.urlencode(
            {
                "event_type": event_type_uri,
                "start_time": start_time,
                "end_time": end_time,
            }
        )
        return self._request("GET", f"/event_type_available_times?{query}")

    def create_invitee(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/invitees", payload)

    def _request(
        self,
        method: str,
        path: str,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        raw_payload = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = request.Request(
            f"{self.api_url}{path}",
            data=raw_payload,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": self.user_agent,
            },
            method=method,
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise CalendlyApiError(
                f"Calendly API HTTP {exc.code}: {body[:2000] or 'empty response body'}",
                status_code=exc.code,
                details=_decode_error_body(body),
            ) from exc
        except error.URLError as exc:
            raise CalendlyApiError(f"Calendly API connection error: {exc.reason}") from exc

        if not response_body:
            return {}
        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CalendlyApiError("Calendly API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise CalendlyApiError("Calendly API returned an unexpected payload.")
        return parsed_body


def _decode_error_body(body: str) -> Any:
    if not body:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        return body
