"""Durable store for tasks and the war-room thread.

Beginner terms:
- Backend: the thing that actually persists the raw JSON document (a file, a
  PostgreSQL row, or nothing at all).
- Snapshot: the last document written, kept in memory. It is the source of
  truth whenever the backend cannot be read.
- Normalize: coerce whatever was loaded into a valid StoreDocument instead of
  failing the request.

There is no locking here. Two handlers that read, mutate and write at the same
time can lose one of the updates; the service runs for a handful of operators
and accepts that.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol, get_args

from pydantic import ValidationError

from .models import Message, StoreDocument, Task, TaskStatus, WarRoom

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    def load(self) -> Any: ...

    def save(self, document: dict[str, Any]) -> None: ...


@dataclass(frozen=True)
class PersistOutcome:
    ok: bool
    reason: str | None = None


class JsonFileStorageBackend:
    """Keep the store as a pretty-printed JSON file on local disk."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def ensure(self, seed: dict[str, Any]) -> None:
        """Create the data directory and seed the file if it is missing."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._write(seed)

    def load(self) -> Any:
        # FileNotFoundError and JSONDecodeError both mean "use the snapshot".
        return json.loads(self.path.read_text(encoding="utf-8"))

    def save(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write(document)

    def _write(self, document: dict[str, Any]) -> None:
        self.path.write_text(json.dumps(document, indent=2), encoding="utf-8")


class NullStorageBackend:
    """Persist nothing; the in-memory snapshot is the only copy."""

    def load(self) -> Any:
        return None

    def save(self, document: dict[str, Any]) -> None:
        return None


class PostgresStorageBackend:
    """Keep the whole store document in a single PostgreSQL JSONB row."""

    def __init__(self, database_url: str, *, document_key: str = "default") -> None:
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url
        self.document_key = document_key
        self._psycopg, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        """Create the store table if it does not already exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS mission_control_store (
                    store_key TEXT PRIMARY KEY,
                    document JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.commit()

    def load(self) -> Any:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT document FROM mission_control_store WHERE store_key = %s",
                (self.document_key,),
            ).fetchone()
        if row is None:
            return None
        raw = row[0]
        return json.loads(raw) if isinstance(raw, str) else raw

    def save(self, document: dict[str, Any]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO mission_control_store (store_key, document, updated_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (store_key)
                DO UPDATE SET document = EXCLUDED.document, updated_at = EXCLUDED.updated_at
                """,
                (self.document_key, self._json_wrapper(document), datetime.now(tz=UTC)),
            )
            conn.commit()

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL store backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, Json


class TaskStore:
    """Process-wide store: a normalized in-memory snapshot mirrored to a backend."""

    def __init__(self, backend: StorageBackend | None = None) -> None:
        self.backend: StorageBackend = backend or NullStorageBackend()
        self._snapshot = StoreDocument()

    def read(self) -> StoreDocument:
        """Return a private, normalized copy of the current store.

        Any backend failure falls back to the in-memory snapshot.
        """
        try:
            raw = self.backend.load()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "store_read event=fallback backend=%s reason=%s",
                type(self.backend).__name__,
                exc,
            )
            raw = None
        if raw is None:
            return self._snapshot.model_copy(deep=True)
        return normalize_store(raw)

    def write(self, document: StoreDocument) -> PersistOutcome:
        """Replace the snapshot, then persist best-effort.

        Never raises; a failed persist is reported in the returned outcome.
        """
        self._snapshot = normalize_store(dump_store(document))
        try:
            self.backend.save(dump_store(self._snapshot))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "store_write event=persist_failed backend=%s reason=%s",
                type(self.backend).__name__,
                exc,
            )
            return PersistOutcome(ok=False, reason=str(exc))
        return PersistOutcome(ok=True)


def dump_store(document: StoreDocument) -> dict[str, Any]:
    return document.model_dump(mode="json", by_alias=True, exclude_none=True)


def normalize_store(raw: Any) -> StoreDocument:
    """Coerce any loaded value into a StoreDocument.

    Non-list collections become empty lists. An entry that does not validate is
    repaired field by field (unusable log lines are dropped, text fields become
    strings, timestamps become integers) so stored work is never discarded.
    Only entries that are not objects, or have no id, are dropped.
    """
    if isinstance(raw, StoreDocument):
        return raw.model_copy(deep=True)
    if not isinstance(raw, dict):
        return StoreDocument()

    raw_tasks = raw.get("tasks")
    raw_war_room = raw.get("warRoom")
    raw_messages = raw_war_room.get("messages") if isinstance(raw_war_room, dict) else None

    tasks = _validate_items(raw_tasks, Task, _repair_task, kind="task")
    messages = _validate_items(raw_messages, Message, _repair_message, kind="message")
    return StoreDocument(tasks=tasks, war_room=WarRoom(messages=messages))


def _validate_items(
    raw_items: Any,
    model: type[Any],
    repair: Callable[[dict[str, Any]], dict[str, Any]],
    *,
    kind: str,
) -> list[Any]:
    if not isinstance(raw_items, list):
        return []
    items = []
    for index, raw_item in enumerate(raw_items):
        try:
            items.append(model.model_validate(raw_item))
            continue
        except ValidationError as exc:
            error_count = exc.error_count()
        if isinstance(raw_item, dict) and raw_item.get("id") not in (None, ""):
            try:
                items.append(model.model_validate(repair(raw_item)))
            except ValidationError:
                pass
            else:
                logger.warning(
                    "store_normalize event=repaired kind=%s index=%d errors=%d",
                    kind,
                    index,
                    error_count,
                )
                continue
        logger.warning(
            "store_normalize event=dropped kind=%s index=%d errors=%d",
            kind,
            index,
            error_count,
        )
    return items


def _repair_task(raw: dict[str, Any]) -> dict[str, Any]:
    repaired = dict(raw)
    repaired["id"] = _as_text(raw.get("id"))
    for key in ("title", "agentId", "details"):
        repaired[key] = _as_text(raw.get(key))
    if raw.get("status") not in get_args(TaskStatus):
        repaired["status"] = "queued"
    repaired["createdAt"] = _as_ms(raw.get("createdAt"))
    repaired["updatedAt"] = _as_ms(raw.get("updatedAt", raw.get("createdAt")))
    raw_logs = raw.get("logs")
    repaired["logs"] = [
        {"at": _as_ms(entry.get("at")), "text": _as_text(entry.get("text"))}
        for entry in (raw_logs if isinstance(raw_logs, list) else [])
        if isinstance(entry, dict)
    ]
    if raw.get("error") is not None:
        repaired["error"] = _as_text(raw.get("error"))
    return repaired


def _repair_message(raw: dict[str, Any]) -> dict[str, Any]:
    repaired = dict(raw)
    repaired["id"] = _as_text(raw.get("id"))
    repaired["at"] = _as_ms(raw.get("at"))
    repaired["author"] = _as_text(raw.get("author"))
    repaired["text"] = _as_text(raw.get("text"))
    if raw.get("parentId") is not None:
        repaired["parentId"] = _as_text(raw.get("parentId"))
    return repaired


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value)


def _as_ms(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def build_task_store(settings: Any) -> TaskStore:
    """Build the store for the backend named in settings."""
    backend_name = settings.store_backend
    if backend_name == "memory":
        return TaskStore(NullStorageBackend())
    if backend_name == "postgres":
        backend = PostgresStorageBackend(settings.database_url)
        backend.migrate()
        return TaskStore(backend)

    file_backend = JsonFileStorageBackend(settings.store_file)
    try:
        file_backend.ensure(dump_store(StoreDocument()))
    except OSError as exc:
        # Read-only filesystems still get a working in-memory store.
        logger.warning("store_init event=seed_failed path=%s reason=%s", file_backend.path, exc)
    return TaskStore(file_backend)
