"""Best-effort third-party integrations: Supabase, Google Sheets, Resend.

Every call returns an IntegrationOutcome instead of raising. Callers may log the
outcome, but a failing integration never fails the request that triggered it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib import error, parse, request

from google.oauth2 import service_account
from googleapiclient.discovery import build

from .settings import Settings

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class IntegrationOutcome:
    ok: bool
    reason: str | None = None


class SupabaseClient:
    """Row inserts through the Supabase PostgREST endpoint."""

    def __init__(self, *, url: str, service_role_key: str, timeout_s: float = 10.0) -> None:
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.url and self.service_role_key)

    def insert(self, table: str, rows: list[dict[str, Any]]) -> IntegrationOutcome:
        if not self.configured:
            return IntegrationOutcome(ok=False, reason="not_configured")
        try:
            self._request(
                "POST",
                f"/rest/v1/{parse.quote(table)}",
                body=rows,
                extra_headers={"Prefer": "return=minimal"},
            )
        except (OSError, ValueError) as exc:
            logger.warning("supabase_insert event=failed table=%s reason=%s", table, exc)
            return IntegrationOutcome(ok=False, reason=str(exc))
        return IntegrationOutcome(ok=True)

    def probe(self, table: str = "bookings") -> IntegrationOutcome:
        """Cheap reachability check: count rows of ``table`` without fetching them."""
        if not self.configured:
            return IntegrationOutcome(ok=False, reason="not_configured")
        try:
            self._request(
                "HEAD",
                f"/rest/v1/{parse.quote(table)}?select=id",
                extra_headers={"Prefer": "count=exact"},
            )
        except (OSError, ValueError) as exc:
            logger.warning("supabase_probe event=failed table=%s reason=%s", table, exc)
            return IntegrationOutcome(ok=False, reason=str(exc))
        return IntegrationOutcome(ok=True)

    def _request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
            **(extra_headers or {}),
        }
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = request.Request(url=f"{self.url}{path}", data=data, method=method, headers=headers)
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                response.read()
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")[:500]
            raise ValueError(f"Supabase request failed status={exc.code} body={raw_error}") from exc


class SheetsClient:
    """Append rows to tabs of one Google spreadsheet with a service account."""

    def __init__(
        self,
        *,
        spreadsheet_id: str,
        credentials_json: str = "",
        credentials_path: Path | None = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.credentials_json = credentials_json
        self.credentials_path = credentials_path

    @property
    def credentials_configured(self) -> bool:
        if self.credentials_json:
            return True
        return self.credentials_path is not None and self.credentials_path.exists()

    def append_row(self, sheet_name: str, values: list[Any]) -> IntegrationOutcome:
        if not self.spreadsheet_id:
            return IntegrationOutcome(ok=False, reason="missing_spreadsheet")
        if not self.credentials_configured:
            return IntegrationOutcome(ok=False, reason="missing_google_credentials")
        try:
            service = self._service()
            service.spreadsheets().values().append(
                spreadsheetId=self.spreadsheet_id,
                range=f"{sheet_name}!A1",
                valueInputOption="RAW",
                body={"values": [values]},
            ).execute()
        except Exception as exc:  # noqa: BLE001
            logger.warning("sheets_append event=failed sheet=%s reason=%s", sheet_name, exc)
            return IntegrationOutcome(ok=False, reason=str(exc))
        return IntegrationOutcome(ok=True)

    def _service(self) -> Any:
        if self.credentials_json:
            credentials = service_account.Credentials.from_service_account_info(
                json.loads(self.credentials_json), scopes=SHEETS_SCOPES
            )
        else:
            credentials = service_account.Credentials.from_service_account_file(
                str(self.credentials_path), scopes=SHEETS_SCOPES
            )
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class ResendClient:
    """Transactional email through the Resend REST API."""

    def __init__(self, *, api_key: str, from_email: str = "", timeout_s: float = 10.0) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @property
    def can_send(self) -> bool:
        return bool(self.api_key and self.from_email)

    def send(self, *, to: str, subject: str, html: str) -> IntegrationOutcome:
        if not self.can_send:
            return IntegrationOutcome(ok=False, reason="not_configured")
        payload = {"from": self.from_email, "to": to, "subject": subject, "html": html}
        req = request.Request(
            url=RESEND_API_URL,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                response.read()
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")[:500]
            logger.warning("resend_send event=failed status=%s body=%s", exc.code, raw_error)
            return IntegrationOutcome(ok=False, reason=f"status={exc.code} body={raw_error}")
        except (OSError, ValueError) as exc:
            logger.warning("resend_send event=failed reason=%s", exc)
            return IntegrationOutcome(ok=False, reason=str(exc))
        return IntegrationOutcome(ok=True)


@dataclass
class Integrations:
    supabase: SupabaseClient
    sheets: SheetsClient
    email: ResendClient
    calendar_id: str = ""

    def status(self) -> dict[str, Any]:
        """Configuration summary shown on the dashboard settings panel."""
        supabase_ok = self.supabase.probe().ok if self.supabase.configured else False
        return {
            "supabase": {"configured": self.supabase.configured, "ok": supabase_ok},
            "resend": {"configured": self.email.configured},
            "googleServiceAccount": {"configured": self.sheets.credentials_configured},
            "needs": {
                "spreadsheetId": not self.sheets.spreadsheet_id,
                "calendarId": not self.calendar_id,
                "fromEmail": not self.email.from_email,
            },
        }


def build_integrations(settings: Settings) -> Integrations:
    return Integrations(
        supabase=SupabaseClient(
            url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            timeout_s=settings.integration_timeout_s,
        ),
        sheets=SheetsClient(
            spreadsheet_id=settings.spreadsheet_id,
            credentials_json=settings.google_service_account_json,
            credentials_path=settings.resolved_service_account_path(),
        ),
        email=ResendClient(
            api_key=settings.resend_api_key,
            from_email=settings.resend_from_email,
            timeout_s=settings.integration_timeout_s,
        ),
        calendar_id=settings.google_calendar_id,
    )
