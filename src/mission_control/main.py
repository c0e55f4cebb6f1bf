"""FastAPI application wiring for the mission control service.

Beginner terms used in this file:
- FastAPI app: the main web application object.
- app.state: shared runtime objects (store, dispatcher, war room, billing).
- lifespan: startup hook; the store is built there so importing this module
  does not touch the filesystem or the database.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .app.agents import AgentCliClient, AgentClient, AgentDirectory
from .app.billing import BillingService
from .app.dispatcher import TaskDispatcher
from .app.errors import MissionControlError
from .app.integrations import Integrations, build_integrations
from .app.models import (
    CreateInvoiceRequest,
    CreateQuoteRequest,
    CreateTaskRequest,
    InvoiceResponse,
    OverviewResponse,
    PostMessageResponse,
    QuoteResponse,
    Task,
    WarRoom,
    WarRoomMessageRequest,
)
from .app.settings import Settings, get_settings
from .app.storage import TaskStore, build_task_store
from .app.war_room import WarRoomService

logger = logging.getLogger(__name__)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    agent_client: AgentClient,
    integrations: Integrations,
    store_override: TaskStore | None,
) -> None:
    if hasattr(app.state, "store"):
        return
    store = store_override or build_task_store(settings)
    directory = AgentDirectory(agent_client)
    app.state.settings = settings
    app.state.store = store
    app.state.integrations = integrations
    app.state.directory = directory
    app.state.dispatcher = TaskDispatcher(
        store=store,
        agent_client=agent_client,
        integrations=integrations,
        timeout_s=settings.dispatch_timeout_s,
    )
    app.state.war_room = WarRoomService(
        store=store,
        agent_client=agent_client,
        directory=directory,
        timeout_s=settings.war_room_timeout_s,
        fan_out_limit=settings.fan_out_limit,
        thread_window=settings.thread_window,
    )
    app.state.billing = BillingService(integrations)
    logger.info(
        "app_start event=ready store_backend=%s agent_command=%s",
        type(store.backend).__name__,
        settings.agent_command,
    )


def create_app(
    *,
    store: TaskStore | None = None,
    agent_client: AgentClient | None = None,
    integrations: Integrations | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    """Application factory.

    Every collaborator can be injected, which is how tests swap in fakes for
    the agent CLI and the third-party integrations.
    """
    settings = settings_override or get_settings()
    agent_client = agent_client or AgentCliClient(
        command=settings.agent_command,
        timeout_grace_s=settings.agent_timeout_grace_s,
    )
    integrations = integrations or build_integrations(settings)

    def ensure(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            agent_client=agent_client,
            integrations=integrations,
            store_override=store,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure(app)
        yield

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    # Keep test paths reliable when lifespan is not executed by the client.
    if store is not None:
        ensure(app)

    def runtime(request: Request) -> Any:
        ensure(request.app)
        return request.app.state

    @app.exception_handler(MissionControlError)
    async def handle_domain_error(_request: Request, exc: MissionControlError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_invalid_body(_request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("request event=invalid_body errors=%d", len(exc.errors()))
        return JSONResponse(status_code=400, content={"error": "invalid request body"})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("request event=unhandled_error reason=%s", exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/overview", response_model=OverviewResponse, response_model_exclude_none=True)
    def overview(request: Request) -> OverviewResponse:
        state = runtime(request)
        document = state.store.read()
        agents = state.directory.overview()
        return OverviewResponse(
            agents=agents.agents,
            sessions_by_agent=agents.sessions_by_agent,
            fallback=agents.fallback,
            tasks=sorted(document.tasks, key=lambda task: task.created_at, reverse=True),
            war_room=WarRoom(messages=document.recent_messages(settings.thread_window)),
        )

    @app.post("/api/tasks", response_model=Task, response_model_exclude_none=True)
    def create_task(request: Request, payload: CreateTaskRequest | None = None) -> Task:
        payload = payload or CreateTaskRequest()
        return runtime(request).dispatcher.create_task(
            payload.title, payload.agent_id, payload.details
        )

    @app.post(
        "/api/tasks/{task_id}/dispatch",
        response_model=Task,
        response_model_exclude_none=True,
    )
    def dispatch_task(task_id: str, request: Request) -> Any:
        outcome = runtime(request).dispatcher.dispatch_task(task_id)
        if not outcome.ok:
            # Agent failures still return the task so the dashboard can show its logs.
            return JSONResponse(
                status_code=500,
                content={
                    "error": outcome.error,
                    "task": outcome.task.model_dump(mode="json", by_alias=True, exclude_none=True),
                },
            )
        return outcome.task

    @app.get("/api/war-room", response_model=WarRoom, response_model_exclude_none=True)
    def get_war_room(request: Request) -> WarRoom:
        return WarRoom(messages=runtime(request).war_room.thread())

    @app.post(
        "/api/war-room/message",
        response_model=PostMessageResponse,
        response_model_exclude_none=True,
    )
    def post_war_room_message(
        request: Request, payload: WarRoomMessageRequest | None = None
    ) -> PostMessageResponse:
        payload = payload or WarRoomMessageRequest()
        return runtime(request).war_room.post_message(payload.author, payload.text)

    @app.get("/api/integrations/status")
    def integrations_status(request: Request) -> dict[str, Any]:
        return runtime(request).integrations.status()

    @app.post("/api/quotes/create", response_model=QuoteResponse)
    def create_quote(request: Request, payload: CreateQuoteRequest | None = None) -> QuoteResponse:
        payload = payload or CreateQuoteRequest()
        quote = runtime(request).billing.create_quote(
            customer_name=payload.customer_name,
            service_type=payload.service_type,
            notes=payload.notes,
            base_price=payload.base_price,
            callout_fee=payload.callout_fee,
        )
        return QuoteResponse(ok=True, quote=quote)

    @app.post("/api/invoices/create", response_model=InvoiceResponse)
    def create_invoice(
        request: Request, payload: CreateInvoiceRequest | None = None
    ) -> InvoiceResponse:
        payload = payload or CreateInvoiceRequest()
        invoice = runtime(request).billing.create_invoice(
            customer_name=payload.customer_name,
            amount=payload.amount,
            email=payload.email,
            quote_id=payload.quote_id,
        )
        return InvoiceResponse(ok=True, invoice=invoice)

    return app


# Module-level app for `uvicorn mission_control.main:app`.
app = create_app()
