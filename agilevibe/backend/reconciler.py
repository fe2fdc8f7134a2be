"""Merge remote change notifications into the local session mirror."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from .codec import PayloadError, decode_deck, decode_participant, decode_revealed, decode_scope, decode_task
from .models import STATE_FIELDS, Participant, participants_path, state_path
from .state import SessionState
from .store import ReplicatedStore, Unsubscribe, split_path

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DEFAULT_LIVENESS_WINDOW = 30.0


class Reconciler:
    """Keeps a ``SessionState`` consistent with one room of a replicated store.

    Room fields are last-write-wins per field: each notification overwrites
    exactly one attribute of the mirror, so notifications for different fields
    may arrive in any order. Participant records are replaced whole, removed on
    tombstones, and treated as tombstoned once their ``lastSeen`` is older than
    the liveness window. The local participant is never pruned by this replica.
    """

    def __init__(
        self,
        state: SessionState,
        *,
        liveness_window: float = DEFAULT_LIVENESS_WINDOW,
        clock: Clock = time.time,
    ) -> None:
        self.state = state
        self.liveness_window = liveness_window
        self.clock = clock
        self.local_id: str | None = None
        self._listeners: list[Callable[[SessionState], None]] = []

    def add_listener(self, listener: Callable[[SessionState], None]) -> None:
        self._listeners.append(listener)

    def attach(self, store: ReplicatedStore) -> Unsubscribe:
        """Subscribe to every room field and the participant collection."""
        room_id = self.state.room_id
        unsubscribers: list[Unsubscribe] = []
        for field in STATE_FIELDS:
            unsubscribers.append(
                store.subscribe(
                    state_path(room_id, field),
                    lambda value, _key, field=field: self.on_remote_field_change(field, value),
                )
            )
        unsubscribers.append(store.subscribe_children(participants_path(room_id), self.on_participant_change_event))

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    def bind_local(self, participant: Participant | None) -> None:
        if participant is None:
            self.local_id = None
            return
        self.local_id = participant.id
        self.state.participants[participant.id] = participant
        self._changed()

    def is_live(self, participant: Participant, now: float | None = None) -> bool:
        if participant.id == self.local_id:
            return True
        current = self.clock() if now is None else now
        return current - participant.last_seen <= self.liveness_window

    def live_participants(self, now: float | None = None) -> list[Participant]:
        current = self.clock() if now is None else now
        return [
            participant
            for participant in self.state.participants.values()
            if self.is_live(participant, current)
        ]

    def on_remote_field_change(self, field: str, value: Any) -> bool:
        """Overwrite one room field; malformed payloads leave the field untouched."""
        try:
            if field == "currentTask":
                task = decode_task(value)
                if task is None:
                    return False
                self.state.current_task = task
            elif field == "revealed":
                self.state.revealed = decode_revealed(value)
            elif field == "deck":
                if value is None:
                    return False
                self.state.deck = decode_deck(value)
            elif field == "activeScope":
                self.state.active_scope = decode_scope(value)
            else:
                logger.warning("Ignoring change for unknown room field %s", field)
                return False
        except PayloadError as exc:
            logger.warning("Dropped malformed %s update in room %s: %s", field, self.state.room_id, exc)
            return False
        self._changed()
        return True

    def on_participant_change_event(self, record: Any, participant_id: str) -> None:
        self.on_participant_change(participant_id, record)

    def on_participant_change(self, participant_id: str, record: Mapping[str, Any] | None) -> bool:
        if record is None:
            return self._remove(participant_id, reason="tombstone")

        try:
            participant = decode_participant(participant_id, record)
        except PayloadError as exc:
            logger.warning("Dropped malformed participant update in room %s: %s", self.state.room_id, exc)
            return False

        if not self.is_live(participant):
            return self._remove(participant_id, reason="stale")

        self.state.participants[participant_id] = participant
        self._changed()
        return True

    def apply_snapshot(self, records: Mapping[str, Mapping[str, Any] | None]) -> None:
        """Merge a full participant snapshot from a peer.

        Ids missing from the snapshot are dropped, except the local
        participant, whose last known record is kept.
        """
        local = self.state.participant(self.local_id)
        merged: dict[str, Participant] = {}
        for participant_id, record in records.items():
            if record is None:
                continue
            try:
                participant = decode_participant(participant_id, record)
            except PayloadError as exc:
                logger.warning("Skipped malformed snapshot entry in room %s: %s", self.state.room_id, exc)
                previous = self.state.participants.get(participant_id)
                if previous is not None:
                    merged[participant_id] = previous
                continue
            if self.is_live(participant):
                merged[participant_id] = participant

        if local is not None and local.id not in merged and local.id not in records:
            merged[local.id] = local

        self.state.participants = merged
        self._changed()

    def prune(self, now: float | None = None) -> list[str]:
        current = self.clock() if now is None else now
        stale = [
            participant_id
            for participant_id, participant in self.state.participants.items()
            if not self.is_live(participant, current)
        ]
        for participant_id in stale:
            del self.state.participants[participant_id]
        if stale:
            logger.debug("Pruned stale participants %s from room %s", stale, self.state.room_id)
            self._changed()
        return stale

    def _remove(self, participant_id: str, reason: str) -> bool:
        if self.state.participants.pop(participant_id, None) is None:
            return False
        logger.debug("Removed participant %s from room %s (%s)", participant_id, self.state.room_id, reason)
        self._changed()
        return True

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)


def participant_records(entries: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Group flat ``room/participants/<id>/<leaf>`` snapshot entries into records."""
    records: dict[str, dict[str, Any]] = {}
    for key, value in entries.items():
        path = split_path(key)
        if len(path) != 4 or path[1] != "participants":
            continue
        records.setdefault(path[2], {})[path[3]] = value
    return records
