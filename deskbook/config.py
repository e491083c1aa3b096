"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables (and an optional ``.env``
file). It centralises all runtime configuration for the service, such as
the admin identity, the tenant id used to prefix store paths, the storage
backend and the booking admission policy.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_APP_ID = "default-app-id"


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. Every value has a
    default so the service starts with an in-memory store and local
    accounts when nothing is configured.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Identity
    admin_email: str = Field(
        default="admin@test.com",
        alias="ADMIN_EMAIL",
        description="The one email address granted admin privileges. Compared as an exact string.",
    )
    auth_mode: Literal["local", "firebase"] = Field(
        default="local",
        alias="AUTH_MODE",
        description="'local' issues bearer tokens from the built-in account list; "
        "'firebase' verifies Firebase ID tokens.",
    )
    firebase_project_id: str = Field(default="", alias="FIREBASE_PROJECT_ID")
    allow_signup: bool = Field(default=True, alias="ALLOW_SIGNUP")
    seed_demo_users: bool = Field(
        default=False,
        alias="SEED_DEMO_USERS",
        description="Create admin@test.com/admin123 and user@test.com/user123 at startup.",
    )
    min_password_length: int = Field(default=6, alias="MIN_PASSWORD_LENGTH")

    # Storage
    app_id: str = Field(
        default=DEFAULT_APP_ID,
        alias="APP_ID",
        description="Tenant id used as the path prefix for every stored document.",
    )
    store_backend: Literal["memory", "firestore"] = Field(default="memory", alias="STORE_BACKEND")
    firestore_project: str = Field(
        default="",
        alias="FIRESTORE_PROJECT",
        description="GCP project for Firestore. Empty means the project inferred from ADC.",
    )

    # Booking behaviour
    booking_policy: Literal["strict", "weak"] = Field(
        default="strict",
        alias="BOOKING_POLICY",
        description=(
            "'strict' re-checks overlaps atomically before inserting a booking; "
            "'weak' inserts unconditionally and lets the live view show double occupancy."
        ),
    )
    slot_start: str = Field(default="08:00", alias="SLOT_START")
    slot_end: str = Field(default="18:00", alias="SLOT_END")
    slot_minutes: int = Field(default=30, alias="SLOT_MINUTES")

    # Service
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    enable_cors: bool = Field(default=False, alias="ENABLE_CORS")

    @field_validator("app_id")
    @classmethod
    def _fallback_app_id(cls, value: str) -> str:
        return value.strip() or DEFAULT_APP_ID


# Instantiate settings at module import time. This allows other modules to
# import ``settings`` directly without repeatedly reading environment variables.
settings = Settings()
