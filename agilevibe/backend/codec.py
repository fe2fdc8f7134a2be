"""Payload encoding for replicated room fields and participant records.

Nested values (the current task and the deck) travel as JSON strings so that
backends without nested structures can carry them; scalars are written as is.
Decoders raise ``PayloadError`` and never return a partially valid value.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from .deck import sort_deck
from .models import Participant, Role, Task


class PayloadError(ValueError):
    """Raised when a replicated payload cannot be decoded."""


def encode_task(task: Task) -> str:
    return json.dumps(task.to_payload())


def decode_task(raw: Any) -> Task | None:
    if raw is None:
        return None
    payload = _loads(raw, "currentTask")
    if not isinstance(payload, dict):
        raise PayloadError("currentTask payload is not an object")
    task_id = payload.get("id")
    if not isinstance(task_id, (str, int)) or str(task_id) == "":
        raise PayloadError("currentTask payload has no id")
    title = payload.get("title") or ""
    description = payload.get("description") or ""
    if not isinstance(title, str) or not isinstance(description, str):
        raise PayloadError("currentTask title/description must be strings")
    return Task(id=str(task_id), title=title, description=description)


def encode_deck(deck: list[str]) -> str:
    return json.dumps(list(deck))


def decode_deck(raw: Any) -> list[str]:
    payload = _loads(raw, "deck")
    if not isinstance(payload, list):
        raise PayloadError("deck payload is not a list")
    cards: list[str] = []
    for item in payload:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise PayloadError(f"deck entry {item!r} is not a card value")
        cards.append(str(item))
    return sort_deck(cards)


def decode_revealed(raw: Any) -> bool:
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if raw in (0, 1):
        return bool(raw)
    raise PayloadError(f"revealed payload {raw!r} is not a boolean")


def decode_scope(raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise PayloadError(f"activeScope payload {raw!r} is not a string")
    return raw


def decode_participant(participant_id: str, record: Mapping[str, Any]) -> Participant:
    if not isinstance(record, Mapping):
        raise PayloadError(f"participant {participant_id} record is not an object")

    name = record.get("name")
    if not isinstance(name, str) or name == "":
        raise PayloadError(f"participant {participant_id} has no name")

    last_seen = record.get("lastSeen")
    if isinstance(last_seen, bool) or not isinstance(last_seen, (int, float)):
        raise PayloadError(f"participant {participant_id} has no lastSeen")

    try:
        role = Role(record.get("role"))
    except ValueError:
        # Records from clients without the observer role use free-form roles.
        role = Role.VOTER

    team = record.get("team")
    if role is Role.ADMIN or not isinstance(team, str) or team == "":
        team = None

    vote = record.get("currentVote")
    if vote is not None:
        if isinstance(vote, bool) or not isinstance(vote, (str, int, float)):
            raise PayloadError(f"participant {participant_id} vote {vote!r} is not a card value")
        vote = str(vote)

    joined_at = record.get("joinedAt", 0)
    if isinstance(joined_at, bool) or not isinstance(joined_at, (int, float)):
        joined_at = 0

    return Participant(
        id=participant_id,
        name=name,
        role=role,
        team=team,
        current_vote=vote,
        last_seen=float(last_seen),
        joined_at=float(joined_at),
    )


def _loads(raw: Any, field: str) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PayloadError(f"{field} payload is not valid JSON") from exc
