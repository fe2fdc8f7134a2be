"""Client-local persisted identity, kept across restarts under a fixed key."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .models import Role

logger = logging.getLogger(__name__)

IDENTITY_KEY = "agilevibe_user"


@dataclass(frozen=True)
class LocalIdentity:
    id: str
    name: str
    role: Role
    team: str | None
    joined_at: float


@dataclass
class IdentityStore:
    path: Path

    def load(self) -> LocalIdentity | None:
        payload = self._read()
        entry = payload.get(IDENTITY_KEY)
        if not isinstance(entry, dict):
            return None
        try:
            return LocalIdentity(
                id=str(entry["id"]),
                name=str(entry["name"]),
                role=Role(entry.get("role", Role.VOTER.value)),
                team=entry.get("team") if isinstance(entry.get("team"), str) else None,
                joined_at=float(entry.get("joinedAt", 0)),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring unreadable identity in %s", self.path)
            return None

    def save(self, identity: LocalIdentity) -> None:
        payload = self._read()
        payload[IDENTITY_KEY] = {
            "id": identity.id,
            "name": identity.name,
            "role": identity.role.value,
            "team": identity.team,
            "joinedAt": identity.joined_at,
        }
        self._write(payload)

    def clear(self) -> None:
        payload = self._read()
        if payload.pop(IDENTITY_KEY, None) is not None:
            self._write(payload)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Identity file %s is unreadable; starting fresh", self.path)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write(self, payload: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            logger.warning("Could not write identity file %s", self.path, exc_info=True)
