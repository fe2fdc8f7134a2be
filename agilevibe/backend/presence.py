"""Presence heartbeat keeping the local participant record alive."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from .models import participant_path
from .reconciler import Reconciler
from .store import ReplicatedStore

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 10.0


class PresenceHeartbeat:
    def __init__(
        self,
        store: ReplicatedStore,
        reconciler: Reconciler,
        participant_id: str,
        *,
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.participant_id = participant_id
        self.interval = interval
        self.clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def beat(self) -> bool:
        """Refresh ``lastSeen`` and re-assert the identity fields of the own record.

        ``currentVote`` is never part of the write.
        """
        now = self.clock()
        room_id = self.reconciler.state.room_id
        local = self.reconciler.state.participant(self.participant_id)
        if local is None:
            path, value = participant_path(room_id, self.participant_id, "lastSeen"), now
        else:
            local = local.with_last_seen(now)
            self.reconciler.state.participants[self.participant_id] = local
            record: dict[str, Any] = local.to_record()
            record.pop("currentVote")
            path, value = participant_path(room_id, self.participant_id), record
        try:
            self.store.put(path, value)
        except Exception:
            logger.warning("Heartbeat for %s failed", self.participant_id, exc_info=True)
            return False
        return True

    async def run(self) -> None:
        while True:
            self.beat()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self.run())

    def stop(self, *, tombstone: bool = False) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if tombstone:
            self.store.put(participant_path(self.reconciler.state.room_id, self.participant_id), None)

    def teardown(self) -> None:
        """Best-effort tombstone on shutdown; liveness pruning covers failures."""
        try:
            self.stop(tombstone=True)
        except Exception:
            logger.warning("Teardown tombstone for %s failed", self.participant_id, exc_info=True)
