"""Pydantic models shared across the API, services, and storage.

Store records (tasks, war-room messages) serialize with camelCase keys so the
persisted document and the dashboard payloads keep one shape. Billing records
stay snake_case because that is the column naming of the relational tables
they are inserted into.
"""

from __future__ import annotations

import time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Task lifecycle: queued -> in_progress -> done | failed.
TaskStatus = Literal["queued", "in_progress", "done", "failed"]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskLog(CamelModel):
    at: int
    text: str


class Task(CamelModel):
    """One unit of work assigned to a single agent."""

    id: str
    title: str
    details: str = ""
    # Free-form on purpose: not checked against the live agent directory.
    agent_id: str
    status: TaskStatus = "queued"
    created_at: int
    updated_at: int
    logs: list[TaskLog] = Field(default_factory=list)
    # Opaque agent payload, present only once the task is done.
    result: Any | None = None
    # Failure description, present only once the task has failed.
    error: str | None = None

    def log(self, text: str) -> None:
        stamp = now_ms()
        self.updated_at = stamp
        self.logs.append(TaskLog(at=stamp, text=text))


class Message(CamelModel):
    id: str
    at: int
    author: str
    text: str
    parent_id: str | None = None


class WarRoom(CamelModel):
    messages: list[Message] = Field(default_factory=list)


class StoreDocument(CamelModel):
    """The whole persisted state: tasks plus the war-room thread."""

    tasks: list[Task] = Field(default_factory=list)
    war_room: WarRoom = Field(default_factory=WarRoom)

    def find_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def recent_messages(self, window: int) -> list[Message]:
        return self.war_room.messages[-window:]


class Agent(BaseModel):
    """Agent descriptor as reported by the agent CLI.

    Unknown keys (``agentDir``, ``workspace``...) are preserved so they can be
    echoed back to the dashboard and used to locate session stores.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    model: str | None = None

    @property
    def agent_dir(self) -> str | None:
        extra = self.model_extra or {}
        value = extra.get("agentDir")
        return value if isinstance(value, str) and value else None


class AgentOverview(BaseModel):
    agents: list[Agent]
    sessions_by_agent: dict[str, list[dict[str, Any]]]
    # True when the live listing failed and the built-in roster was used.
    fallback: bool = False


class LineItem(BaseModel):
    label: str
    amount: float


class Quote(BaseModel):
    id: str
    customer_name: str
    service_type: str
    notes: str = ""
    line_items: list[LineItem]
    total: float


class Invoice(BaseModel):
    id: str
    customer_name: str
    email: str | None = None
    quote_id: str | None = None
    amount: float
    status: Literal["issued"] = "issued"
    issued_at: str
    email_sent: bool | None = None


# Request bodies. Required fields are Optional here so that missing values are
# reported by the services with the same 400 message whatever the client sent.


class CreateTaskRequest(CamelModel):
    title: str | None = None
    agent_id: str | None = None
    details: str | None = None


class WarRoomMessageRequest(BaseModel):
    author: str = "orchestrator"
    text: str = ""


class CreateQuoteRequest(BaseModel):
    customer_name: str | None = None
    service_type: str | None = None
    notes: str = ""
    base_price: Any = 0
    callout_fee: Any = 0


class CreateInvoiceRequest(BaseModel):
    customer_name: str | None = None
    email: str | None = None
    quote_id: str | None = None
    amount: Any = None


# Response bodies.


class OverviewResponse(CamelModel):
    agents: list[Agent]
    sessions_by_agent: dict[str, list[dict[str, Any]]]
    # True when the agent CLI listing failed and the built-in roster is shown.
    fallback: bool = False
    tasks: list[Task]
    war_room: WarRoom


class PostMessageResponse(BaseModel):
    ok: bool = True
    message: Message
    thread: list[Message]


class QuoteResponse(BaseModel):
    ok: bool = True
    quote: Quote


class InvoiceResponse(BaseModel):
    ok: bool = True
    invoice: Invoice
