"""War room: a shared thread where one message is broadcast to several agents.

Targets are asked concurrently. Every target leaves a visible trace in the
thread: its reply, or a canned line when the call fails. Only an explicit
``REPLY_SKIP`` answer is dropped.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any

from .agents import AgentClient, AgentDirectory
from .errors import InvalidRequestError
from .mentions import resolve_targets
from .models import Message, PostMessageResponse, now_ms
from .storage import TaskStore

logger = logging.getLogger(__name__)

SKIP_SENTINEL = "REPLY_SKIP"
MAX_REPLY_CHARS = 2000
MAX_RAW_REPLY_CHARS = 800

FALLBACK_LINES: dict[str, str] = {
    "quote": (
        "Suggested quote logic: base fee + urgency surcharge + after-hours multiplier "
        "+ travel band. Show assumptions clearly."
    ),
    "invoice": (
        "Suggested invoice flow: issue instantly after booking confirmation, send payment "
        "link, auto-remind at +24h and +72h."
    ),
    "integration": (
        "Integration note: persist event with idempotency key, then fan-out to "
        "Sheets/DB/Email with retry queue."
    ),
    "research": (
        "Market input: prioritize missed-call recovery and fast booking confirmation "
        "as primary ROI hooks."
    ),
    "codex": (
        "Build input: keep handlers stateless, validate payloads with schemas, and log "
        "structured events for replay."
    ),
    "main": (
        "Orchestrator input: assign by intent (booking/quote/invoice/support) and escalate "
        "uncertain requests to human."
    ),
}
DEFAULT_FALLBACK_LINE = "No additional input."


class WarRoomService:
    def __init__(
        self,
        *,
        store: TaskStore,
        agent_client: AgentClient,
        directory: AgentDirectory,
        timeout_s: int = 120,
        fan_out_limit: int = 5,
        thread_window: int = 120,
    ) -> None:
        self.store = store
        self.agent_client = agent_client
        self.directory = directory
        self.timeout_s = timeout_s
        self.fan_out_limit = fan_out_limit
        self.thread_window = thread_window

    def thread(self) -> list[Message]:
        return self.store.read().recent_messages(self.thread_window)

    def post_message(self, author: str | None, text: str | None) -> PostMessageResponse:
        text = text or ""
        if not text.strip():
            raise InvalidRequestError("text is required")
        author = author or "orchestrator"

        document = self.store.read()
        original = Message(id=f"msg_{now_ms()}", at=now_ms(), author=author, text=text.strip())
        document.war_room.messages.append(original)

        targets = resolve_targets(text, self.directory.agent_ids(), limit=self.fan_out_limit)
        logger.info(
            "war_room event=fan_out message_id=%s author=%s targets=%s",
            original.id,
            author,
            ",".join(targets),
        )
        prompt = build_war_room_prompt(author, text)

        if targets:
            with ThreadPoolExecutor(max_workers=len(targets)) as pool:
                futures: dict[Future[Any], str] = {
                    pool.submit(
                        self.agent_client.ask_agent, target, prompt, timeout_s=self.timeout_s
                    ): target
                    for target in targets
                }
                # Appended in completion order by this thread only.
                for future in as_completed(futures):
                    reply = self._settle(futures[future], future, parent_id=original.id)
                    if reply is not None:
                        document.war_room.messages.append(reply)

        self.store.write(document)
        return PostMessageResponse(
            ok=True,
            message=original,
            thread=document.recent_messages(self.thread_window),
        )

    def _settle(self, target: str, future: Future[Any], *, parent_id: str) -> Message | None:
        try:
            result = future.result()
        except Exception as exc:  # noqa: BLE001
            logger.warning("war_room event=fallback agent_id=%s reason=%s", target, exc)
            return Message(
                id=f"msg_{now_ms()}_{target}_fallback",
                at=now_ms(),
                author=target,
                text=FALLBACK_LINES.get(target, DEFAULT_FALLBACK_LINE),
                parent_id=parent_id,
            )

        reply_text = extract_reply_text(result)
        if reply_text.strip() == SKIP_SENTINEL:
            logger.info("war_room event=skipped agent_id=%s", target)
            return None
        return Message(
            id=f"msg_{now_ms()}_{target}",
            at=now_ms(),
            author=target,
            text=reply_text[:MAX_REPLY_CHARS],
            parent_id=parent_id,
        )


def build_war_room_prompt(author: str, text: str) -> str:
    return "\n".join(
        [
            f"War room thread message from {author}:",
            text,
            f"Reply with concise input. If no value to add, reply exactly: {SKIP_SENTINEL}",
        ]
    )


def extract_reply_text(result: Any) -> str:
    """Pick ``reply``, then ``text``, else a clipped JSON dump of the payload."""
    if isinstance(result, dict):
        for key in ("reply", "text"):
            value = result.get(key)
            if value is None:
                continue
            return value if isinstance(value, str) else json.dumps(value)
    return json.dumps(result)[:MAX_RAW_REPLY_CHARS]
