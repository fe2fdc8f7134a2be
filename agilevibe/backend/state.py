"""Local session mirror and room bootstrap defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .codec import encode_deck, encode_task
from .deck import DEFAULT_DECK
from .models import Participant, Task


DEFAULT_TASK = Task(id="1", title="New Story", description="Describe requirements here...")


@dataclass
class SessionState:
    """Read-mostly projection of one room as seen by one replica."""

    room_id: str
    current_task: Task | None = None
    revealed: bool = False
    deck: list[str] = field(default_factory=lambda: list(DEFAULT_DECK))
    active_scope: str | None = None
    participants: dict[str, Participant] = field(default_factory=dict)

    def participant(self, participant_id: str | None) -> Participant | None:
        if participant_id is None:
            return None
        return self.participants.get(participant_id)


def build_initial_state(room_id: str) -> SessionState:
    """Return the mirror a replica starts from before any remote value arrives."""
    return SessionState(room_id=room_id, current_task=DEFAULT_TASK)


def build_default_fields() -> dict[str, Any]:
    """Encoded values the first reader writes for fields it finds absent."""
    return {
        "currentTask": encode_task(DEFAULT_TASK),
        "revealed": False,
        "deck": encode_deck(list(DEFAULT_DECK)),
    }
