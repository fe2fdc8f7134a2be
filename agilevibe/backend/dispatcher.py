"""Translate user intents into replicated writes plus optimistic local updates."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence

from .aggregator import vote_list
from .codec import encode_deck, encode_task
from .deck import add_card, remove_card
from .identity import IdentityStore, LocalIdentity
from .ids import new_participant_id, new_task_id
from .insight import UNAVAILABLE_MESSAGE, InsightGenerator
from .models import (
    ALL_TEAMS,
    ROLE_CYCLE,
    AppView,
    Participant,
    Permission,
    Role,
    Task,
    has_permission,
    participant_path,
    scope_allows,
    state_path,
)
from .reconciler import Reconciler
from .store import ReplicatedStore

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Applies intents for the local participant.

    Every intent is a sequence of single-field writes; nothing assumes the
    backend applies them together. Rejected intents return ``False`` (or
    ``None``) without writing anything.
    """

    def __init__(
        self,
        store: ReplicatedStore,
        reconciler: Reconciler,
        *,
        identity_store: IdentityStore | None = None,
        insight_generator: InsightGenerator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.identity_store = identity_store
        self.insight_generator = insight_generator
        self.clock = clock
        self.view = AppView.LANDING
        self.insight: str | None = None

    @property
    def room_id(self) -> str:
        return self.reconciler.state.room_id

    @property
    def local(self) -> Participant | None:
        return self.reconciler.state.participant(self.reconciler.local_id)

    def join(self, name: str, role: Role = Role.VOTER, team: str | None = None) -> Participant | None:
        if self.reconciler.local_id is not None:
            logger.debug("Join ignored: already joined as %s", self.reconciler.local_id)
            return None
        display_name = name.strip()
        if display_name == "":
            return None

        now = self.clock()
        participant = Participant(
            id=new_participant_id(),
            name=display_name,
            role=role,
            team=None if role is Role.ADMIN else (team or None),
            current_vote=None,
            last_seen=now,
            joined_at=now,
        )
        self._enter(participant)
        logger.info("Joined room %s as %s (%s)", self.room_id, participant.id, participant.role.value)
        return participant

    def restore(self, identity: LocalIdentity) -> Participant:
        """Re-publish a persisted identity, keeping any vote the store still holds."""
        known = self.reconciler.state.participant(identity.id)
        participant = Participant(
            id=identity.id,
            name=identity.name,
            role=identity.role,
            team=None if identity.role is Role.ADMIN else identity.team,
            current_vote=known.current_vote if known is not None else None,
            last_seen=self.clock(),
            joined_at=identity.joined_at or self.clock(),
        )
        self._enter(participant)
        logger.info("Restored identity %s in room %s", participant.id, self.room_id)
        return participant

    def vote(self, value: str) -> bool:
        local = self.local
        state = self.reconciler.state
        if local is None or not local.can(Permission.VOTE):
            return self._reject("vote", "role may not vote")
        if state.revealed:
            return self._reject("vote", "votes already revealed")
        if value not in state.deck:
            return self._reject("vote", f"{value!r} is not in the deck")
        if not scope_allows(state.active_scope, local):
            return self._reject("vote", "team is outside the active scope")

        next_vote = None if local.current_vote == value else value
        state.participants[local.id] = local.with_vote(next_vote)
        self._put(participant_path(self.room_id, local.id, "currentVote"), next_vote)
        return True

    def reveal(self) -> bool:
        local = self.local
        if local is None or not local.can(Permission.REVEAL):
            return self._reject("reveal", "role may not reveal")
        if self.reconciler.state.revealed:
            return self._reject("reveal", "already revealed")
        if not vote_list(self.reconciler):
            return self._reject("reveal", "no votes cast")

        self.reconciler.state.revealed = True
        self._put(state_path(self.room_id, "revealed"), True)
        return True

    def reset(self) -> bool:
        local = self.local
        if local is None or not local.can(Permission.RESET):
            return self._reject("reset", "role may not reset")

        state = self.reconciler.state
        for participant_id in list(state.participants):
            state.participants[participant_id] = state.participants[participant_id].with_vote(None)
            self._put(participant_path(self.room_id, participant_id, "currentVote"), None)
        state.revealed = False
        self._put(state_path(self.room_id, "revealed"), False)
        self.insight = None
        return True

    def set_task(self, title: str, description: str = "") -> Task | None:
        local = self.local
        if local is None or not local.can(Permission.EDIT_TASK):
            self._reject("set_task", "role may not edit the task")
            return None
        if title.strip() == "":
            self._reject("set_task", "empty title")
            return None

        self.reset()
        task = Task(id=new_task_id(), title=title.strip(), description=description.strip())
        self.reconciler.state.current_task = task
        self._put(state_path(self.room_id, "currentTask"), encode_task(task))
        return task

    def add_card(self, value: str) -> bool:
        if not self._may_edit_deck():
            return self._reject("add_card", "role may not edit the deck")
        deck = add_card(self.reconciler.state.deck, value)
        if deck is None:
            return self._reject("add_card", f"{value!r} is empty or already present")
        return self._write_deck(deck)

    def remove_card(self, value: str) -> bool:
        if not self._may_edit_deck():
            return self._reject("remove_card", "role may not edit the deck")
        deck = remove_card(self.reconciler.state.deck, value)
        if deck is None:
            return self._reject("remove_card", f"{value!r} is not in the deck")
        return self._write_deck(deck)

    def set_active_scope(self, scope: str | None) -> bool:
        local = self.local
        if local is None or not local.can(Permission.SET_SCOPE):
            return self._reject("set_active_scope", "role may not set the scope")
        normalized = (scope or "").strip() or ALL_TEAMS
        self.reconciler.state.active_scope = normalized
        self._put(state_path(self.room_id, "activeScope"), normalized)
        return True

    def change_role(self, role: Role | None = None, team: str | None = None) -> Participant | None:
        local = self.local
        if local is None:
            return None
        if role is None:
            role = ROLE_CYCLE[(ROLE_CYCLE.index(local.role) + 1) % len(ROLE_CYCLE)]
        next_team = None if role is Role.ADMIN else (team or local.team)
        updated = Participant(
            id=local.id,
            name=local.name,
            role=role,
            team=next_team,
            current_vote=local.current_vote if has_permission(role, Permission.VOTE) else None,
            last_seen=self.clock(),
            joined_at=local.joined_at,
        )
        self.reconciler.state.participants[local.id] = updated
        self._put(
            participant_path(self.room_id, local.id),
            {"role": role.value, "team": next_team, "currentVote": updated.current_vote, "lastSeen": updated.last_seen},
        )
        self._persist(updated)
        return updated

    def logout(self) -> bool:
        local_id = self.reconciler.local_id
        if local_id is None:
            return False
        self.reconciler.state.participants.pop(local_id, None)
        self.reconciler.bind_local(None)
        self._put(participant_path(self.room_id, local_id), None)
        if self.identity_store is not None:
            self.identity_store.clear()
        self.view = AppView.LANDING
        self.insight = None
        logger.info("Left room %s as %s", self.room_id, local_id)
        return True

    async def request_insight(self) -> str:
        task = self.reconciler.state.current_task
        if self.insight_generator is None:
            self.insight = UNAVAILABLE_MESSAGE
            return self.insight
        self.insight = await self.insight_generator.summarize(
            task.title if task is not None else "",
            task.description if task is not None else "",
            vote_list(self.reconciler),
        )
        return self.insight

    def _enter(self, participant: Participant) -> None:
        record: dict[str, Any] = participant.to_record()
        # A rejoin keeps whatever vote the store already holds.
        record.pop("currentVote")
        self.reconciler.bind_local(participant)
        self._put(participant_path(self.room_id, participant.id), record)
        self._persist(participant)
        self.view = AppView.SESSION

    def _persist(self, participant: Participant) -> None:
        if self.identity_store is None:
            return
        self.identity_store.save(
            LocalIdentity(
                id=participant.id,
                name=participant.name,
                role=participant.role,
                team=participant.team,
                joined_at=participant.joined_at,
            )
        )

    def _may_edit_deck(self) -> bool:
        local = self.local
        return local is not None and local.can(Permission.EDIT_DECK)

    def _write_deck(self, deck: Sequence[str]) -> bool:
        self.reconciler.state.deck = list(deck)
        self._put(state_path(self.room_id, "deck"), encode_deck(list(deck)))
        return True

    def _put(self, path: tuple[str, ...], value: Any) -> bool:
        try:
            self.store.put(path, value)
        except Exception:
            logger.warning("Write to %s dropped", "/".join(path), exc_info=True)
            return False
        return True

    def _reject(self, intent: str, reason: str) -> bool:
        logger.debug("Rejected %s: %s", intent, reason)
        return False
