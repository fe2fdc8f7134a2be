"""Domain models for room participants, tasks and role permissions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class AppView(str, Enum):
    LANDING = "LANDING"
    SESSION = "SESSION"


class Role(str, Enum):
    VOTER = "voter"
    ADMIN = "admin"
    OBSERVER = "observer"


class Permission(str, Enum):
    VOTE = "vote"
    REVEAL = "reveal"
    RESET = "reset"
    EDIT_TASK = "edit_task"
    EDIT_DECK = "edit_deck"
    SET_SCOPE = "set_scope"


ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.VOTER: frozenset({Permission.VOTE, Permission.REVEAL, Permission.RESET}),
    Role.ADMIN: frozenset(Permission),
    Role.OBSERVER: frozenset({Permission.REVEAL, Permission.RESET}),
}

ROLE_CYCLE: tuple[Role, ...] = (Role.VOTER, Role.ADMIN, Role.OBSERVER)

# Scope value that disables the team gate.
ALL_TEAMS = "All"

STATE_FIELDS = ("currentTask", "revealed", "deck", "activeScope")


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


@dataclass(frozen=True)
class Task:
    id: str
    title: str
    description: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "description": self.description}


@dataclass(frozen=True)
class Participant:
    id: str
    name: str
    role: Role
    team: str | None
    current_vote: str | None
    last_seen: float
    joined_at: float

    def can(self, permission: Permission) -> bool:
        return has_permission(self.role, permission)

    def with_vote(self, vote: str | None) -> Participant:
        return replace(self, current_vote=vote)

    def with_last_seen(self, last_seen: float) -> Participant:
        return replace(self, last_seen=last_seen)

    def to_record(self) -> dict[str, Any]:
        """Return the replicated record; ``None`` leaves are tombstoned by the store."""
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "team": self.team,
            "currentVote": self.current_vote,
            "lastSeen": self.last_seen,
            "joinedAt": self.joined_at,
        }


def scope_allows(scope: str | None, participant: Participant) -> bool:
    if scope is None or scope == ALL_TEAMS:
        return True
    return participant.team == scope


def is_vote_eligible(participant: Participant, scope: str | None) -> bool:
    return participant.can(Permission.VOTE) and scope_allows(scope, participant)


def state_path(room_id: str, field: str) -> tuple[str, ...]:
    return (room_id, "state", field)


def participants_path(room_id: str) -> tuple[str, ...]:
    return (room_id, "participants")


def participant_path(room_id: str, participant_id: str, *leaf: str) -> tuple[str, ...]:
    return (room_id, "participants", participant_id, *leaf)
