"""Backend package for AgileVibe planning poker replicas."""

from .config import BackendSettings, load_settings
from .dispatcher import CommandDispatcher
from .reconciler import Reconciler
from .session import RoomSession
from .state import SessionState, build_initial_state
from .store import InMemoryReplicatedStore, PostgresReplicatedStore, ReplicatedStore, create_store

__all__ = [
    "BackendSettings",
    "build_initial_state",
    "CommandDispatcher",
    "create_store",
    "InMemoryReplicatedStore",
    "load_settings",
    "PostgresReplicatedStore",
    "Reconciler",
    "ReplicatedStore",
    "RoomSession",
    "SessionState",
]
