"""One replica of a room: store, mirror, intents, presence and derived views."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from . import aggregator
from .config import BackendSettings
from .dispatcher import CommandDispatcher
from .identity import IdentityStore
from .insight import InsightGenerator
from .models import AppView, Participant, Role, participants_path, state_path
from .presence import DEFAULT_HEARTBEAT_INTERVAL, PresenceHeartbeat
from .reconciler import DEFAULT_LIVENESS_WINDOW, Reconciler, participant_records
from .state import build_default_fields, build_initial_state
from .store import ReplicatedStore, Unsubscribe, create_store

logger = logging.getLogger(__name__)


class RoomSession:
    def __init__(
        self,
        store: ReplicatedStore,
        room_id: str,
        *,
        identity_store: IdentityStore | None = None,
        insight_generator: InsightGenerator | None = None,
        liveness_window: float = DEFAULT_LIVENESS_WINDOW,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.identity_store = identity_store
        self.heartbeat_interval = heartbeat_interval
        self.poll_interval = poll_interval
        self.clock = clock
        self.state = build_initial_state(room_id)
        self.reconciler = Reconciler(self.state, liveness_window=liveness_window, clock=clock)
        self.dispatcher = CommandDispatcher(
            store,
            self.reconciler,
            identity_store=identity_store,
            insight_generator=insight_generator,
            clock=clock,
        )
        self.presence: PresenceHeartbeat | None = None
        self._detach: Unsubscribe | None = None
        self._was_online = store.connected

    @classmethod
    def from_settings(cls, settings: BackendSettings) -> RoomSession:
        return cls(
            create_store(settings.database_url),
            settings.room_id,
            identity_store=IdentityStore(settings.identity_path),
            insight_generator=InsightGenerator(settings.gemini_api_key, model=settings.insight_model),
            liveness_window=settings.liveness_window,
            heartbeat_interval=settings.heartbeat_interval,
            poll_interval=settings.poll_interval,
        )

    @property
    def room_id(self) -> str:
        return self.state.room_id

    @property
    def online(self) -> bool:
        return self.store.connected

    @property
    def view(self) -> AppView:
        return self.dispatcher.view

    @property
    def me(self) -> Participant | None:
        return self.dispatcher.local

    def open(self) -> None:
        """Subscribe, initialize absent room fields and restore a persisted identity."""
        if self._detach is not None:
            return
        self._detach = self.reconciler.attach(self.store)
        self.store.sync()
        self._bootstrap_room()
        if self.identity_store is not None:
            identity = self.identity_store.load()
            if identity is not None:
                self._track_presence(self.dispatcher.restore(identity))

    def close(self) -> None:
        if self.presence is not None:
            self.presence.teardown()
            self.presence = None
        if self._detach is not None:
            self._detach()
            self._detach = None

    def join(self, name: str, role: Role = Role.VOTER, team: str | None = None) -> Participant | None:
        participant = self.dispatcher.join(name, role, team)
        if participant is not None:
            self._track_presence(participant)
        return participant

    def logout(self) -> bool:
        if self.presence is not None:
            self.presence.stop()
            self.presence = None
        return self.dispatcher.logout()

    def tick(self) -> None:
        self.store.sync()
        online = self.store.connected
        if online and not self._was_online:
            logger.info("Backend for room %s is back; resyncing participants", self.room_id)
            self.resync()
        self._was_online = online
        self.reconciler.prune()

    def resync(self) -> None:
        """Rebuild the participant mirror from a full store snapshot."""
        entries = self.store.snapshot(participants_path(self.room_id))
        self.reconciler.apply_snapshot(participant_records(entries))

    async def run(self, stop: asyncio.Event | None = None) -> None:
        self.open()
        try:
            while stop is None or not stop.is_set():
                self.tick()
                if self.presence is not None and not self.presence.running:
                    self.presence.start()
                await asyncio.sleep(self.poll_interval)
        finally:
            self.close()

    def vote_list(self) -> list[str]:
        return aggregator.vote_list(self.reconciler)

    def average(self) -> str:
        return aggregator.average(self.vote_list())

    def histogram(self) -> dict[str, int]:
        return aggregator.histogram(self.vote_list())

    def my_vote(self) -> str | None:
        return aggregator.my_vote(self.reconciler, self.reconciler.local_id)

    def summary(self) -> dict[str, Any]:
        votes = self.vote_list()
        task = self.state.current_task
        return {
            "roomId": self.room_id,
            "online": self.online,
            "view": self.view.value,
            "task": task.to_payload() if task is not None else None,
            "revealed": self.state.revealed,
            "deck": list(self.state.deck),
            "activeScope": self.state.active_scope,
            "participants": aggregator.participant_views(self.reconciler, self.reconciler.local_id),
            "myVote": self.my_vote(),
            "voteCount": len(votes),
            "average": aggregator.average(votes) if self.state.revealed else None,
            "histogram": aggregator.histogram(votes) if self.state.revealed else None,
            "insight": self.dispatcher.insight,
        }

    def _bootstrap_room(self) -> None:
        for field, value in build_default_fields().items():
            path = state_path(self.room_id, field)
            if self.store.snapshot(path):
                continue
            logger.info("Initializing %s for room %s", field, self.room_id)
            try:
                self.store.put(path, value)
            except Exception:
                logger.warning("Could not initialize %s for room %s", field, self.room_id, exc_info=True)

    def _track_presence(self, participant: Participant) -> None:
        if self.presence is not None:
            self.presence.stop()
        self.presence = PresenceHeartbeat(
            self.store,
            self.reconciler,
            participant.id,
            interval=self.heartbeat_interval,
            clock=self.clock,
        )
