from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "data_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_users_collection",
        "mongodb_auth_identities_collection",
        "mongodb_scheduled_calls_collection",
        "mongodb_mentor_calendly_info_collection",
        "mongodb_connect_timeout_ms",
        "calendly_api_url",
        "calendly_api_timeout_seconds",
        "calendly_api_user_agent",
        "calendly_webhook_signing_key",
        "calendly_webhook_signature_validation_enabled",
        "calendly_booking_location_kind",
        "availability_window_days",
        "availability_min_lead_hours",
        "availability_max_slots",
    },
)


class Settings(BaseSettings):
    app_name: str = "Connectly Scheduling Functions"
    app_env: str = "development"
    app_version: str = "1.0.0"
    api_prefix: str = ""
    allowed_origins: Annotated[list[str], NoDecode] = [
        "https://calendly.com",
        "https://api.calendly.com",
    ]
    data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "connectly"
    mongodb_users_collection: str = "users"
    mongodb_auth_identities_collection: str = "auth_identities"
    mongodb_scheduled_calls_collection: str = "scheduled_calls"
    mongodb_mentor_calendly_info_collection: str = "mentor_calendly_info"
    mongodb_connect_timeout_ms: int = 2000
    calendly_api_url: str = "https://api.calendly.com"
    calendly_api_timeout_seconds: float = 15.0
    calendly_api_user_agent: str = "ConnectlySchedulingFunctions/1.0"
    calendly_webhook_signing_key: str = ""
    calendly_webhook_signature_validation_enabled: bool = False
    calendly_booking_location_kind: str = "zoom_conference"
    availability_window_days: int = 7
    availability_min_lead_hours: int = 2
    availability_max_slots: int = 1000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("data_store", mode="before")
    @classmethod
    def normalize_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("calendly_api_url", mode="before")
    @classmethod
    def normalize_calendly_api_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("calendly_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_calendly_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 15.0
        return parsed_value

    @field_validator("availability_window_days", mode="before")
    @classmethod
    def normalize_availability_window(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 7
        return parsed_value

    @field_validator("availability_min_lead_hours", mode="before")
    @classmethod
    def normalize_availability_lead(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value < 0:
            return 2
        return parsed_value

    @field_validator("availability_max_slots", mode="before")
    @classmethod
    def normalize_availability_max_slots(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 1000
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
