"""FastAPI relay for room entries: REST access, websocket fan-out and a room summary."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from . import aggregator
from .config import load_settings
from .insight import InsightGenerator
from .models import participant_path
from .reconciler import DEFAULT_LIVENESS_WINDOW, Reconciler
from .state import SessionState
from .store import ReplicatedStore, create_store, normalize_path

logger = logging.getLogger(__name__)


class PutEntryRequest(BaseModel):
    path: list[str] = Field(min_length=1, max_length=8)
    value: Any = None


class EntriesResponse(BaseModel):
    room_id: str
    entries: dict[str, Any]


class RoomSummaryResponse(BaseModel):
    room_id: str
    task: dict[str, Any] | None
    revealed: bool
    deck: list[str]
    active_scope: str | None
    participants: list[dict[str, Any]]
    vote_count: int
    average: str | None
    histogram: dict[str, int] | None


class InsightResponse(BaseModel):
    room_id: str
    insight: str


class RoomRelayHub:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)

    async def connect(self, room_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[room_id].add(websocket)

    def disconnect(self, room_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(room_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(room_id, None)

    async def send_snapshot(self, websocket: WebSocket, room_id: str, entries: dict[str, Any]) -> None:
        await websocket.send_json({"type": "snapshot", "roomId": room_id, "entries": entries})

    async def broadcast_change(self, room_id: str, path: list[str], value: Any) -> None:
        stale_connections: list[WebSocket] = []
        message = {"type": "change", "roomId": room_id, "path": path, "value": value}
        for websocket in list(self._connections.get(room_id, set())):
            try:
                await websocket.send_json(message)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(room_id=room_id, websocket=websocket)


def observe_room(store: ReplicatedStore, room_id: str, liveness_window: float) -> Reconciler:
    """Build a one-off mirror of the room as an anonymous observer sees it."""
    reconciler = Reconciler(SessionState(room_id=room_id), liveness_window=liveness_window)
    store.sync()
    detach = reconciler.attach(store)
    detach()
    return reconciler


def _room_path(room_id: str, path: list[str]) -> tuple[str, ...]:
    try:
        return normalize_path([room_id, *path])
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def create_app(
    store: ReplicatedStore | None = None,
    *,
    insight_generator: InsightGenerator | None = None,
    liveness_window: float | None = None,
) -> FastAPI:
    settings = load_settings()
    app = FastAPI(title="AgileVibe Relay", version="0.1.0")
    room_store = store if store is not None else create_store(settings.database_url)
    insight = insight_generator or InsightGenerator(settings.gemini_api_key, model=settings.insight_model)
    window = liveness_window if liveness_window is not None else settings.liveness_window or DEFAULT_LIVENESS_WINDOW
    relay_hub = RoomRelayHub()
    app.state.relay_hub = relay_hub

    def get_store() -> ReplicatedStore:
        return room_store

    def apply_put(local_store: ReplicatedStore, room_id: str, path: list[str], value: Any) -> list[str]:
        full_path = _room_path(room_id, path)
        try:
            local_store.put(full_path, value)
        except Exception as exc:
            logger.warning("Relay write to %s failed", "/".join(full_path), exc_info=True)
            raise HTTPException(status_code=503, detail="Replication backend unavailable") from exc
        return list(full_path[1:])

    @app.get("/api/rooms/{room_id}/entries", response_model=EntriesResponse)
    def get_entries(
        room_id: str,
        local_store: ReplicatedStore = Depends(get_store),
    ) -> EntriesResponse:
        local_store.sync()
        return EntriesResponse(room_id=room_id, entries=local_store.snapshot((room_id,)))

    @app.put("/api/rooms/{room_id}/entries", response_model=EntriesResponse)
    async def put_entry(
        room_id: str,
        payload: PutEntryRequest,
        local_store: ReplicatedStore = Depends(get_store),
    ) -> EntriesResponse:
        path = apply_put(local_store, room_id, payload.path, payload.value)
        await relay_hub.broadcast_change(room_id=room_id, path=path, value=payload.value)
        return EntriesResponse(room_id=room_id, entries=local_store.snapshot((room_id, *path)))

    @app.delete("/api/rooms/{room_id}/participants/{participant_id}", response_model=EntriesResponse)
    async def delete_participant(
        room_id: str,
        participant_id: str,
        local_store: ReplicatedStore = Depends(get_store),
    ) -> EntriesResponse:
        path = apply_put(local_store, room_id, list(participant_path(room_id, participant_id)[1:]), None)
        await relay_hub.broadcast_change(room_id=room_id, path=path, value=None)
        return EntriesResponse(room_id=room_id, entries={})

    @app.get("/api/rooms/{room_id}/summary", response_model=RoomSummaryResponse)
    def get_summary(
        room_id: str,
        local_store: ReplicatedStore = Depends(get_store),
    ) -> RoomSummaryResponse:
        reconciler = observe_room(local_store, room_id, window)
        state = reconciler.state
        votes = aggregator.vote_list(reconciler)
        return RoomSummaryResponse(
            room_id=room_id,
            task=state.current_task.to_payload() if state.current_task is not None else None,
            revealed=state.revealed,
            deck=list(state.deck),
            active_scope=state.active_scope,
            participants=aggregator.participant_views(reconciler, viewer_id=None),
            vote_count=len(votes),
            average=aggregator.average(votes) if state.revealed else None,
            histogram=aggregator.histogram(votes) if state.revealed else None,
        )

    @app.post("/api/rooms/{room_id}/insight", response_model=InsightResponse)
    async def post_insight(
        room_id: str,
        local_store: ReplicatedStore = Depends(get_store),
    ) -> InsightResponse:
        reconciler = observe_room(local_store, room_id, window)
        if not reconciler.state.revealed:
            raise HTTPException(status_code=409, detail="Votes are not revealed yet")
        task = reconciler.state.current_task
        text = await insight.summarize(
            task.title if task is not None else "",
            task.description if task is not None else "",
            aggregator.vote_list(reconciler),
        )
        return InsightResponse(room_id=room_id, insight=text)

    @app.websocket("/ws/rooms/{room_id}")
    async def room_ws(
        websocket: WebSocket,
        room_id: str,
        local_store: ReplicatedStore = Depends(get_store),
    ) -> None:
        await relay_hub.connect(room_id=room_id, websocket=websocket)
        local_store.sync()
        await relay_hub.send_snapshot(websocket=websocket, room_id=room_id, entries=local_store.snapshot((room_id,)))

        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError:
                    logger.warning("Ignoring undecodable relay message in room %s", room_id)
                    continue
                if not isinstance(message, dict) or message.get("type") != "put":
                    logger.warning("Ignoring relay message without type=put in room %s", room_id)
                    continue
                try:
                    payload = PutEntryRequest.model_validate(message)
                    path = apply_put(local_store, room_id, payload.path, payload.value)
                except (ValidationError, HTTPException):
                    logger.warning("Ignoring invalid relay message in room %s", room_id)
                    continue
                await relay_hub.broadcast_change(room_id=room_id, path=path, value=payload.value)
        except WebSocketDisconnect:
            relay_hub.disconnect(room_id=room_id, websocket=websocket)


app = create_app()
