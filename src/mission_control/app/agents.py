"""Agent CLI client and agent directory.

Every agent interaction goes through one external command (``openclaw`` by
default) that prints JSON on stdout:

- ``agents list --json``: agent descriptors.
- ``sessions --json --store <path>``: sessions of one agent.
- ``agent --agent <id> --message <text> --json --timeout <s>``: one prompt.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from .errors import AgentCallError
from .models import Agent, AgentOverview

logger = logging.getLogger(__name__)

# Shown when the CLI cannot list agents so the dashboard stays usable.
FALLBACK_ROSTER: tuple[Agent, ...] = (
    Agent(id="main", model="openai-codex/gpt-5.3-codex"),
    Agent(id="codex", model="openai-codex/gpt-5.3-codex"),
    Agent(id="research", model="google-antigravity/claude-opus-4-5-thinking"),
    Agent(id="quote", model="openai-codex/gpt-5.3-codex"),
    Agent(id="invoice", model="openai-codex/gpt-5.3-codex"),
    Agent(id="integration", model="openai-codex/gpt-5.3-codex"),
)
FALLBACK_AGENT_IDS: tuple[str, ...] = tuple(agent.id for agent in FALLBACK_ROSTER)

_MAX_OUTPUT_CHARS = 10 * 1024 * 1024
_LISTING_TIMEOUT_S = 30.0


class AgentClient(Protocol):
    """What the services need from the agent runtime."""

    def list_agents(self) -> list[Agent]: ...

    def list_sessions(self, agents: list[Agent]) -> dict[str, list[dict[str, Any]]]: ...

    def ask_agent(self, agent_id: str, message: str, *, timeout_s: int) -> Any: ...


class AgentCliClient:
    """Run the agent CLI as a subprocess and parse its JSON output."""

    def __init__(
        self,
        *,
        command: str = "openclaw",
        timeout_grace_s: float = 15.0,
        max_workers: int = 8,
    ) -> None:
        self.command = command
        self.timeout_grace_s = max(0.0, timeout_grace_s)
        self.max_workers = max(1, max_workers)

    def run_json(self, args: list[str], *, timeout_s: float) -> Any:
        argv = [self.command, *args]
        started = time.monotonic()
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout_s,
            )
        except FileNotFoundError as exc:
            raise AgentCallError(f"command_not_found command={self.command}") from exc
        except subprocess.TimeoutExpired as exc:
            raise AgentCallError(
                f"command_timeout command={self.command} timeout_s={timeout_s:g}"
            ) from exc
        except OSError as exc:
            raise AgentCallError(f"command_error command={self.command} reason={exc}") from exc

        elapsed_ms = round((time.monotonic() - started) * 1000.0, 2)
        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()[:500]
            raise AgentCallError(
                f"command_failed command={self.command} returncode={completed.returncode} "
                f"stderr={stderr}"
            )
        stdout = (completed.stdout or "")[:_MAX_OUTPUT_CHARS]
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise AgentCallError(f"invalid_json command={self.command} reason={exc}") from exc
        logger.debug("agent_cli event=ok args=%s duration_ms=%s", args[:2], elapsed_ms)
        return payload

    def list_agents(self) -> list[Agent]:
        raw = self.run_json(["agents", "list", "--json"], timeout_s=_LISTING_TIMEOUT_S)
        if not isinstance(raw, list):
            raise AgentCallError("invalid_agent_listing expected a JSON array")
        try:
            return [Agent.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise AgentCallError(f"invalid_agent_listing reason={exc}") from exc

    def list_sessions(self, agents: list[Agent]) -> dict[str, list[dict[str, Any]]]:
        """Sessions per agent; one agent failing only empties its own list."""
        if not agents:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(agents))) as pool:
            futures = {agent.id: pool.submit(self._sessions_for, agent) for agent in agents}
            return {agent_id: future.result() for agent_id, future in futures.items()}

    def ask_agent(self, agent_id: str, message: str, *, timeout_s: int) -> Any:
        args = [
            "agent",
            "--agent",
            agent_id,
            "--message",
            message,
            "--json",
            "--timeout",
            str(timeout_s),
        ]
        return self.run_json(args, timeout_s=timeout_s + self.timeout_grace_s)

    def _sessions_for(self, agent: Agent) -> list[dict[str, Any]]:
        try:
            store_path = session_store_path(agent)
            raw = self.run_json(
                ["sessions", "--json", "--store", str(store_path)],
                timeout_s=_LISTING_TIMEOUT_S,
            )
        except (AgentCallError, ValueError) as exc:
            logger.warning("agent_sessions event=degraded agent_id=%s reason=%s", agent.id, exc)
            return []
        sessions = raw.get("sessions") if isinstance(raw, dict) else None
        if not isinstance(sessions, list):
            return []
        return [item for item in sessions if isinstance(item, dict)]


def session_store_path(agent: Agent) -> Path:
    """Sessions live next to the agent directory: ``<agentDir>/../sessions/sessions.json``."""
    agent_dir = agent.agent_dir
    if agent_dir is None:
        raise ValueError(f"agent {agent.id} has no agentDir")
    return Path(agent_dir).parent / "sessions" / "sessions.json"


class AgentDirectory:
    """Agent roster lookups with the built-in fallback roster."""

    def __init__(self, client: AgentClient) -> None:
        self.client = client

    def overview(self) -> AgentOverview:
        try:
            agents = self.client.list_agents()
            sessions = self.client.list_sessions(agents)
        except Exception as exc:  # noqa: BLE001
            logger.warning("agent_directory event=fallback reason=%s", exc)
            return fallback_overview()
        return AgentOverview(agents=agents, sessions_by_agent=sessions)

    def agent_ids(self) -> list[str]:
        try:
            return [agent.id for agent in self.client.list_agents()]
        except Exception as exc:  # noqa: BLE001
            logger.warning("agent_directory event=fallback_ids reason=%s", exc)
            return list(FALLBACK_AGENT_IDS)


def fallback_overview() -> AgentOverview:
    return AgentOverview(
        agents=[agent.model_copy() for agent in FALLBACK_ROSTER],
        sessions_by_agent={agent.id: [] for agent in FALLBACK_ROSTER},
        fallback=True,
    )
