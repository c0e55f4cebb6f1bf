"""Application settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

StoreBackendName = Literal["file", "postgres", "memory"]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables.

    Service knobs use the ``MISSION_CONTROL_`` prefix. Third-party credentials
    keep the plain names the deployment already exports (``SUPABASE_URL``,
    ``RESEND_API_KEY``, ...), so they are read through validation aliases.
    """

    app_name: str = "mission-control"
    store_backend: StoreBackendName = "file"
    data_dir: Path = Path("data")
    database_url: str = ""

    # Agent CLI.
    agent_command: str = "openclaw"
    dispatch_timeout_s: int = Field(default=300, ge=1)
    war_room_timeout_s: int = Field(default=120, ge=1)
    # Extra seconds granted to the CLI process on top of its own --timeout.
    agent_timeout_grace_s: float = Field(default=15.0, ge=0.0)
    fan_out_limit: int = Field(default=5, ge=1)
    thread_window: int = Field(default=120, ge=1)

    # Outbound HTTP integrations.
    integration_timeout_s: float = Field(default=10.0, ge=0.5)
    supabase_url: str = Field(default="", validation_alias=AliasChoices("SUPABASE_URL"))
    supabase_service_role_key: str = Field(
        default="", validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY")
    )
    resend_api_key: str = Field(default="", validation_alias=AliasChoices("RESEND_API_KEY"))
    resend_from_email: str = Field(default="", validation_alias=AliasChoices("RESEND_FROM_EMAIL"))
    spreadsheet_id: str = Field(default="", validation_alias=AliasChoices("SPREADSHEET_ID"))
    google_service_account_path: str = Field(
        default="", validation_alias=AliasChoices("GOOGLE_SERVICE_ACCOUNT_PATH")
    )
    google_service_account_json: str = Field(
        default="", validation_alias=AliasChoices("GOOGLE_SERVICE_ACCOUNT_JSON")
    )
    google_calendar_id: str = Field(default="", validation_alias=AliasChoices("GOOGLE_CALENDAR_ID"))

    model_config = SettingsConfigDict(
        env_prefix="MISSION_CONTROL_",
        extra="ignore",
        populate_by_name=True,
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )

    @property
    def store_file(self) -> Path:
        return self.data_dir / "tasks.json"

    def resolved_service_account_path(self) -> Path | None:
        if not self.google_service_account_path:
            return None
        return Path.cwd() / self.google_service_account_path


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
