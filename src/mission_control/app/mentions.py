from __future__ import annotations

import re
from collections.abc import Iterable

MENTION_PATTERN = re.compile(r"@([A-Za-z0-9_-]+)")

# Addressed when a message mentions nobody; the orchestrator ("main") is left out.
DEFAULT_BROADCAST: tuple[str, ...] = ("research", "codex", "quote", "invoice", "integration")


def extract_mentions(text: str, allowed_agent_ids: Iterable[str]) -> list[str]:
    """Return mentioned agent ids, lowercased, deduplicated, in first-seen order.

    Only ids present in ``allowed_agent_ids`` (case-insensitive) are kept.
    """
    allowed = {agent_id.lower() for agent_id in allowed_agent_ids}
    seen: set[str] = set()
    mentions: list[str] = []
    for match in MENTION_PATTERN.findall(text or ""):
        agent_id = match.lower()
        if agent_id in seen or agent_id not in allowed:
            continue
        seen.add(agent_id)
        mentions.append(agent_id)
    return mentions


def resolve_targets(text: str, allowed_agent_ids: Iterable[str], *, limit: int = 5) -> list[str]:
    mentions = extract_mentions(text, allowed_agent_ids)
    targets = mentions or list(DEFAULT_BROADCAST)
    return targets[: max(0, limit)]
