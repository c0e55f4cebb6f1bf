from __future__ import annotations

import argparse
import json
from pathlib import Path

from mission_control.app.storage import PostgresStorageBackend, dump_store, normalize_store


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Migrate the mission control JSON store file to a PostgreSQL database."
    )
    parser.add_argument(
        "--json-path",
        type=Path,
        default=Path("data/tasks.json"),
        help="Path to source store file (default: data/tasks.json).",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        required=True,
        help="PostgreSQL connection URL.",
    )
    return parser.parse_args()


def migrate(*, json_path: Path, database_url: str) -> tuple[int, int]:
    if not json_path.exists():
        raise FileNotFoundError(f"Store file not found: {json_path}")
    document = normalize_store(json.loads(json_path.read_text(encoding="utf-8")))

    backend = PostgresStorageBackend(database_url)
    backend.migrate()
    backend.save(dump_store(document))

    return len(document.tasks), len(document.war_room.messages)


def main() -> None:
    args = _parse_args()
    tasks, messages = migrate(json_path=args.json_path, database_url=args.database_url)
    print(
        f"Migrated {tasks} task(s) and {messages} war room message(s) from {args.json_path} "
        "to PostgreSQL database."
    )


if __name__ == "__main__":
    main()
