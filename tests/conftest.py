from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from mission_control.app.errors import AgentCallError
from mission_control.app.integrations import IntegrationOutcome, Integrations
from mission_control.app.models import Agent
from mission_control.app.settings import Settings
from mission_control.app.storage import JsonFileStorageBackend, TaskStore
from mission_control.main import create_app

INTEGRATION_ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "RESEND_API_KEY",
    "RESEND_FROM_EMAIL",
    "SPREADSHEET_ID",
    "GOOGLE_SERVICE_ACCOUNT_PATH",
    "GOOGLE_SERVICE_ACCOUNT_JSON",
    "GOOGLE_CALENDAR_ID",
)


class FakeAgentClient:
    """Test double for the agent CLI.

    ``replies`` maps agent id to a payload, an exception instance to raise, or a
    callable receiving the prompt.
    """

    def __init__(
        self,
        *,
        agents: list[Agent] | None = None,
        replies: dict[str, Any] | None = None,
    ) -> None:
        self.agents = agents
        self.replies: dict[str, Any] = replies or {}
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def list_agents(self) -> list[Agent]:
        if self.agents is None:
            raise AgentCallError("command_not_found command=openclaw")
        return list(self.agents)

    def list_sessions(self, agents: list[Agent]) -> dict[str, list[dict[str, Any]]]:
        return {agent.id: [{"key": f"{agent.id}:main"}] for agent in agents}

    def ask_agent(self, agent_id: str, message: str, *, timeout_s: int) -> Any:
        with self._lock:
            self.calls.append({"agent_id": agent_id, "message": message, "timeout_s": timeout_s})
        reply = self.replies.get(agent_id, {"reply": f"{agent_id} acknowledges"})
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(message)
        return reply


class RecordingSheets:
    def __init__(self) -> None:
        self.spreadsheet_id = "sheet-123"
        self.credentials_configured = True
        self.rows: list[tuple[str, list[Any]]] = []

    def append_row(self, sheet_name: str, values: list[Any]) -> IntegrationOutcome:
        self.rows.append((sheet_name, values))
        return IntegrationOutcome(ok=True)


class RecordingSupabase:
    def __init__(self, *, configured: bool = True) -> None:
        self.configured = configured
        self.inserts: list[tuple[str, list[dict[str, Any]]]] = []

    def insert(self, table: str, rows: list[dict[str, Any]]) -> IntegrationOutcome:
        self.inserts.append((table, rows))
        return IntegrationOutcome(ok=True)

    def probe(self, table: str = "bookings") -> IntegrationOutcome:
        return IntegrationOutcome(ok=True)


class RecordingEmail:
    def __init__(self, *, from_email: str = "ops@example.com", fail: bool = False) -> None:
        self.from_email = from_email
        self.configured = True
        self.fail = fail
        self.sent: list[dict[str, str]] = []

    @property
    def can_send(self) -> bool:
        return bool(self.from_email)

    def send(self, *, to: str, subject: str, html: str) -> IntegrationOutcome:
        self.sent.append({"to": to, "subject": subject, "html": html})
        if self.fail:
            return IntegrationOutcome(ok=False, reason="status=422")
        return IntegrationOutcome(ok=True)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Settings:
    for name in INTEGRATION_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return Settings(_env_file=None, store_backend="memory", data_dir=tmp_path / "data")


@pytest.fixture
def roster() -> list[Agent]:
    return [
        Agent(id="main", model="m"),
        Agent(id="codex", model="m"),
        Agent(id="research", model="m"),
        Agent(id="quote", model="m"),
        Agent(id="invoice", model="m"),
        Agent(id="integration", model="m"),
    ]


@pytest.fixture
def agent_client(roster: list[Agent]) -> FakeAgentClient:
    return FakeAgentClient(agents=roster)


@pytest.fixture
def integrations() -> Integrations:
    return Integrations(
        supabase=RecordingSupabase(),
        sheets=RecordingSheets(),
        email=RecordingEmail(),
        calendar_id="",
    )


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "tasks.json"


@pytest.fixture
def store(store_path: Path) -> TaskStore:
    return TaskStore(JsonFileStorageBackend(store_path))


@pytest.fixture
def make_client(
    settings: Settings,
    store: TaskStore,
    agent_client: FakeAgentClient,
    integrations: Integrations,
) -> Callable[..., TestClient]:
    def factory(**overrides: Any) -> TestClient:
        app = create_app(
            store=overrides.get("store", store),
            agent_client=overrides.get("agent_client", agent_client),
            integrations=overrides.get("integrations", integrations),
            settings_override=overrides.get("settings", settings),
        )
        return TestClient(app)

    return factory


@pytest.fixture
def client(make_client: Callable[..., TestClient]) -> Iterator[TestClient]:
    yield make_client()
