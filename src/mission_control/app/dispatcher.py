"""Task creation and dispatch.

The only state machine in the service::

    queued -> in_progress -> done | failed

Each transition appends a log line and persists the store. A failed agent call
is recorded on the task, never retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from .agents import AgentClient
from .errors import InvalidRequestError, TaskNotFoundError
from .integrations import Integrations
from .models import Task, TaskLog, now_ms
from .storage import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    task: Task
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskDispatcher:
    def __init__(
        self,
        *,
        store: TaskStore,
        agent_client: AgentClient,
        integrations: Integrations,
        timeout_s: int = 300,
    ) -> None:
        self.store = store
        self.agent_client = agent_client
        self.integrations = integrations
        self.timeout_s = timeout_s

    def create_task(
        self,
        title: str | None,
        agent_id: str | None,
        details: str | None = None,
    ) -> Task:
        title = (title or "").strip()
        agent_id = (agent_id or "").strip()
        if not title or not agent_id:
            raise InvalidRequestError("title and agentId are required")

        document = self.store.read()
        stamp = now_ms()
        task = Task(
            id=_unique_task_id(stamp, {existing.id for existing in document.tasks}),
            title=title,
            details=details or "",
            agent_id=agent_id,
            status="queued",
            created_at=stamp,
            updated_at=stamp,
            logs=[TaskLog(at=stamp, text=f"Task queued for {agent_id}")],
        )
        document.tasks.append(task)
        self.store.write(document)
        logger.info("task_create event=queued task_id=%s agent_id=%s", task.id, agent_id)

        self.integrations.sheets.append_row(
            "tasks",
            [
                _iso(task.created_at),
                task.id,
                task.title,
                task.agent_id,
                task.status,
                task.details,
            ],
        )
        return task

    def dispatch_task(self, task_id: str) -> DispatchOutcome:
        document = self.store.read()
        task = document.find_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        task.status = "in_progress"
        task.log("Dispatching to agent...")
        self.store.write(document)
        logger.info("task_dispatch event=start task_id=%s agent_id=%s", task.id, task.agent_id)

        try:
            result = self.agent_client.ask_agent(
                task.agent_id, build_task_prompt(task), timeout_s=self.timeout_s
            )
        except Exception as exc:  # noqa: BLE001
            task.status = "failed"
            task.error = str(exc)
            task.result = None
            task.log(f"Task failed: {exc}")
            self.store.write(document)
            logger.warning(
                "task_dispatch event=failed task_id=%s agent_id=%s reason=%s",
                task.id,
                task.agent_id,
                exc,
            )
            return DispatchOutcome(task=task, error=str(exc))

        task.status = "done"
        task.result = result
        task.error = None
        task.log("Task completed")
        self.store.write(document)
        logger.info("task_dispatch event=completed task_id=%s agent_id=%s", task.id, task.agent_id)
        return DispatchOutcome(task=task)


def build_task_prompt(task: Task) -> str:
    lines = [f"You are assigned task: {task.title}"]
    if task.details:
        lines.append(f"Details: {task.details}")
    lines.append("Return: (1) brief plan, (2) execution result, (3) next steps.")
    return "\n".join(lines)


def _unique_task_id(stamp: int, existing: set[str]) -> str:
    # Two tasks created in the same millisecond would otherwise share an id.
    candidate = f"task_{stamp}"
    suffix = 1
    while candidate in existing:
        candidate = f"task_{stamp}_{suffix}"
        suffix += 1
    return candidate


def _iso(stamp_ms: int) -> str:
    return datetime.fromtimestamp(stamp_ms / 1000, tz=UTC).isoformat().replace("+00:00", "Z")
