"""Replicated key-value backends behind the put/subscribe contract.

Values live at tuple paths such as ``(room_id, "participants", pid, "lastSeen")``.
A ``None`` write tombstones a path and everything below it, a mapping merges
into the subtree leaf by leaf and any other value replaces the subtree.
Subscribers receive the materialized value at their path, replayed on
subscribe, and again whenever a write changes it.
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)

Path = tuple[str, ...]
OnChange = Callable[[Any, str], None]
Unsubscribe = Callable[[], None]

PATH_SEPARATOR = "/"


class ReplicatedStore(Protocol):
    @property
    def connected(self) -> bool:
        """Whether the last exchange with the backend succeeded."""

    def put(self, path: Sequence[str], value: Any) -> None:
        """Write ``value`` at ``path``; ``None`` tombstones the path."""

    def subscribe(self, path: Sequence[str], on_change: OnChange) -> Unsubscribe:
        """Deliver ``(value, key)`` for ``path`` now and on every change."""

    def subscribe_children(self, path: Sequence[str], on_change: OnChange) -> Unsubscribe:
        """Deliver ``(child_value, child_key)`` for each child of ``path`` now and on every change."""

    def sync(self) -> None:
        """Pull remote changes into the local view and notify subscribers."""

    def snapshot(self, prefix: Sequence[str] = ()) -> dict[str, Any]:
        """Return the flat ``{"a/b": value}`` leaves stored under ``prefix``."""


def join_path(path: Sequence[str]) -> str:
    return PATH_SEPARATOR.join(path)


def split_path(key: str) -> Path:
    return tuple(key.split(PATH_SEPARATOR))


def normalize_path(path: Sequence[str]) -> Path:
    if isinstance(path, str):
        normalized = split_path(path)
    else:
        normalized = tuple(str(segment) for segment in path)
    if not normalized or any(segment == "" or PATH_SEPARATOR in segment for segment in normalized):
        raise ValueError(f"invalid store path: {path!r}")
    return normalized


def flatten_write(path: Path, value: Any) -> list[tuple[Path, Any]]:
    """Expand a write into leaf writes; ``None`` items are leaf tombstones."""
    if isinstance(value, Mapping):
        leaves: list[tuple[Path, Any]] = []
        for key, item in value.items():
            leaves.extend(flatten_write(path + (str(key),), item))
        return leaves
    return [(path, value)]


def _is_related(left: Path, right: Path) -> bool:
    shortest = min(len(left), len(right))
    return left[:shortest] == right[:shortest]


@dataclass
class _Subscription:
    path: Path
    on_change: OnChange
    children: bool


@dataclass
class InMemoryReplicatedStore:
    """Single-process store; every replica holding the instance sees writes synchronously."""

    def __post_init__(self) -> None:
        self._leaves: dict[Path, Any] = {}
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def connected(self) -> bool:
        return True

    def put(self, path: Sequence[str], value: Any) -> None:
        normalized = normalize_path(path)
        self._commit([normalized], lambda: self._write(normalized, value))

    def subscribe(self, path: Sequence[str], on_change: OnChange) -> Unsubscribe:
        normalized = normalize_path(path)
        unsubscribe = self._register(_Subscription(path=normalized, on_change=on_change, children=False))
        value = self._materialize(normalized)
        if value is not None:
            self._deliver(on_change, value, normalized)
        return unsubscribe

    def subscribe_children(self, path: Sequence[str], on_change: OnChange) -> Unsubscribe:
        normalized = normalize_path(path)
        unsubscribe = self._register(_Subscription(path=normalized, on_change=on_change, children=True))
        for key in sorted(self._children(normalized)):
            child = normalized + (key,)
            self._deliver(on_change, self._materialize(child), child)
        return unsubscribe

    def sync(self) -> None:
        return None

    def snapshot(self, prefix: Sequence[str] = ()) -> dict[str, Any]:
        root = tuple(prefix)
        return {
            join_path(leaf): value
            for leaf, value in sorted(self._leaves.items())
            if leaf[: len(root)] == root
        }

    def replace_leaves(self, roots: Iterable[Path], leaves: Mapping[Path, Any]) -> None:
        """Make the subtrees under ``roots`` equal to ``leaves`` and notify the differences."""
        touched = list(roots)

        def mutate() -> None:
            for root in touched:
                self._delete(root)
            for leaf, value in leaves.items():
                if value is not None:
                    self._set_leaf(leaf, value)

        self._commit(touched, mutate)

    def _register(self, subscription: _Subscription) -> Unsubscribe:
        subscription_id = next(self._ids)
        self._subscriptions[subscription_id] = subscription

        def unsubscribe() -> None:
            self._subscriptions.pop(subscription_id, None)

        return unsubscribe

    def _write(self, path: Path, value: Any) -> None:
        for leaf, item in flatten_write(path, value):
            if item is None:
                self._delete(leaf)
            else:
                self._set_leaf(leaf, item)

    def _set_leaf(self, path: Path, value: Any) -> None:
        self._delete(path)
        for depth in range(1, len(path)):
            self._leaves.pop(path[:depth], None)
        self._leaves[path] = value

    def _delete(self, path: Path) -> None:
        depth = len(path)
        for leaf in [leaf for leaf in self._leaves if leaf[:depth] == path]:
            del self._leaves[leaf]

    def _materialize(self, path: Path) -> Any:
        if path in self._leaves:
            return self._leaves[path]
        depth = len(path)
        tree: dict[str, Any] = {}
        for leaf, value in self._leaves.items():
            if len(leaf) <= depth or leaf[:depth] != path:
                continue
            node = tree
            for segment in leaf[depth:-1]:
                node = node.setdefault(segment, {})
            node[leaf[-1]] = value
        return tree or None

    def _children(self, path: Path) -> set[str]:
        depth = len(path)
        return {leaf[depth] for leaf in self._leaves if len(leaf) > depth and leaf[:depth] == path}

    def _watched(self, subscription: _Subscription, touched: list[Path]) -> set[Path]:
        depth = len(subscription.path)
        watched: set[Path] = set()
        for written in touched:
            if not _is_related(written, subscription.path):
                continue
            if not subscription.children:
                watched.add(subscription.path)
            elif len(written) > depth:
                watched.add(written[: depth + 1])
            else:
                watched.update(subscription.path + (key,) for key in self._children(subscription.path))
        return watched

    def _commit(self, touched: list[Path], mutate: Callable[[], None]) -> None:
        pending: list[tuple[int, _Subscription, dict[Path, Any]]] = []
        for subscription_id, subscription in list(self._subscriptions.items()):
            before = {path: self._materialize(path) for path in self._watched(subscription, touched)}
            pending.append((subscription_id, subscription, before))

        mutate()

        for subscription_id, subscription, before in pending:
            watched = set(before) | self._watched(subscription, touched)
            for path in sorted(watched):
                if subscription_id not in self._subscriptions:
                    break
                value = self._materialize(path)
                if value != before.get(path):
                    self._deliver(subscription.on_change, value, path)

    def _deliver(self, on_change: OnChange, value: Any, path: Path) -> None:
        try:
            on_change(value, path[-1])
        except Exception:
            logger.exception("Subscriber failed for %s", join_path(path))


def _like_prefix(key: str) -> str:
    escaped = key.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}{PATH_SEPARATOR}%"


@dataclass
class PostgresReplicatedStore:
    """Leaf rows in ``replica_entries``; remote changes arrive by polling ``sync``."""

    database_url: str

    def __post_init__(self) -> None:
        self._cache = InMemoryReplicatedStore()
        self._roots: list[Path] = []
        self._connected = True

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    @property
    def connected(self) -> bool:
        return self._connected

    def put(self, path: Sequence[str], value: Any) -> None:
        normalized = normalize_path(path)
        try:
            self._write_rows(normalized, value)
        except Exception:
            self._connected = False
            logger.warning("Write to %s failed; backend marked offline", join_path(normalized))
            raise
        self._connected = True
        self._cache.put(normalized, value)

    def subscribe(self, path: Sequence[str], on_change: OnChange) -> Unsubscribe:
        normalized = normalize_path(path)
        self._track_root(normalized)
        return self._cache.subscribe(normalized, on_change)

    def subscribe_children(self, path: Sequence[str], on_change: OnChange) -> Unsubscribe:
        normalized = normalize_path(path)
        self._track_root(normalized)
        return self._cache.subscribe_children(normalized, on_change)

    def sync(self) -> None:
        if not self._roots:
            return
        patterns = [_like_prefix(join_path(root)) for root in self._roots]
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT path, value
                        FROM replica_entries
                        WHERE path LIKE ANY(%s)
                        """,
                        (patterns,),
                    )
                    rows = cur.fetchall()
        except Exception:
            if self._connected:
                logger.warning("Sync failed; backend marked offline", exc_info=True)
            self._connected = False
            return

        if not self._connected:
            logger.info("Backend reachable again")
        self._connected = True
        leaves = {split_path(key): value for key, value in rows}
        self._cache.replace_leaves(self._roots, leaves)

    def snapshot(self, prefix: Sequence[str] = ()) -> dict[str, Any]:
        return self._cache.snapshot(prefix)

    def _track_root(self, path: Path) -> None:
        root = path[:1]
        if root not in self._roots:
            self._roots.append(root)

    def _write_rows(self, path: Path, value: Any) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                for leaf, item in flatten_write(path, value):
                    key = join_path(leaf)
                    cur.execute(
                        """
                        DELETE FROM replica_entries
                        WHERE path = %s OR path LIKE %s
                        """,
                        (key, _like_prefix(key)),
                    )
                    if item is None:
                        continue
                    ancestors = [join_path(leaf[:depth]) for depth in range(1, len(leaf))]
                    if ancestors:
                        cur.execute(
                            """
                            DELETE FROM replica_entries
                            WHERE path = ANY(%s)
                            """,
                            (ancestors,),
                        )
                    cur.execute(
                        """
                        INSERT INTO replica_entries (path, value, updated_at)
                        VALUES (%s, %s::jsonb, now())
                        ON CONFLICT (path) DO UPDATE
                        SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
                        """,
                        (key, json.dumps(item)),
                    )
            conn.commit()


def create_store(database_url: str | None) -> ReplicatedStore:
    if database_url:
        return PostgresReplicatedStore(database_url=database_url)
    logger.info("No replication backend configured; running in single-user mode")
    return InMemoryReplicatedStore()
