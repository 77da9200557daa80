"""Hierarchical key-value tree persisted through SQLAlchemy.

The tree mirrors the semantics of a hosted realtime database: values are
addressed by slash-delimited paths, writing ``None`` (or an empty mapping)
removes a node, multi-path updates land atomically, and subscribers receive
the full snapshot of their path after every overlapping write.
"""

import asyncio
import copy
import inspect
import logging
import secrets
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.exceptions.messenger import StoreUnavailableError
from models.tree_node import TreeNode


logger = logging.getLogger(__name__)

# Ordered by ASCII value so generated keys sort chronologically as plain strings
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

Listener = Callable[[Any], Awaitable[None] | None]
Unsubscribe = Callable[[], None]

# Returned from a transaction update function to leave the node untouched
ABORT = object()


def normalize_path(path: str) -> str:
    """Collapse a path to ``a/b/c`` form (no leading, trailing or doubled slashes)."""
    return "/".join(segment for segment in str(path).split("/") if segment)


def join_path(*parts: str) -> str:
    return normalize_path("/".join(str(part) for part in parts if part))


def _ancestors(path: str) -> list[str]:
    segments = path.split("/")
    return ["/".join(segments[:i]) for i in range(1, len(segments))]


def _overlaps(a: str, b: str) -> bool:
    if not a or not b or a == b:
        return True
    return a.startswith(b + "/") or b.startswith(a + "/")


def _flatten(path: str, value: Any, out: dict[str, Any]) -> None:
    if isinstance(value, dict):
        for key, child in value.items():
            if child is None:
                continue
            key = str(key)
            if not key or "/" in key:
                raise ValueError(f"Invalid key {key!r} under {path!r}")
            _flatten(join_path(path, key), child, out)
    elif value is not None:
        if not path:
            raise ValueError("Cannot store a leaf value at the tree root")
        out[path] = value


def _assemble(root: str, rows: Iterable[tuple[str, Any]]) -> Any:
    tree: dict[str, Any] = {}
    for path, value in rows:
        if path == root:
            return value
        relative = path[len(root) + 1:] if root else path
        parts = relative.split("/")
        node = tree
        for segment in parts[:-1]:
            node = node.setdefault(segment, {})
        node[parts[-1]] = value
    return tree or None


class PushIdGenerator:
    """Generates unique, chronologically sortable child keys.

    Eight characters of millisecond timestamp followed by twelve random
    characters; keys minted within the same millisecond increment the random
    part so they still sort in creation order.
    """

    def __init__(self):
        self._last_ms = 0
        self._last_random: list[int] = []

    def __call__(self) -> str:
        now = int(time.time() * 1000)
        duplicate = now == self._last_ms
        self._last_ms = now

        timestamp_chars = []
        for _ in range(8):
            timestamp_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        key = "".join(reversed(timestamp_chars))

        if not duplicate:
            self._last_random = [secrets.randbelow(64) for _ in range(12)]
        else:
            i = 11
            while i > 0 and self._last_random[i] == 63:
                self._last_random[i] = 0
                i -= 1
            self._last_random[i] += 1

        return key + "".join(PUSH_CHARS[r] for r in self._last_random)


class TreeStore:
    """Async hierarchical store with subscriptions and atomic multi-path writes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the store.

        Args:
            session_factory: Factory producing async sessions bound to the
                database holding the ``tree_nodes`` table.
        """
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()
        self._listeners: dict[int, tuple[str, Listener]] = {}
        self._next_listener_id = 0
        self.push_key = PushIdGenerator()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # Reads

    async def get(self, path: str) -> Any:
        """Return the value at ``path``: a nested dict, a leaf value, or None."""
        path = normalize_path(path)
        try:
            async with self._session_factory() as session:
                return await self._read(session, path)
        except SQLAlchemyError as e:
            logger.error(f"Tree store read failed at {path}: {str(e)}")
            raise StoreUnavailableError(f"Failed to read {path}") from e

    async def get_last_children(self, path: str, limit: int) -> dict[str, Any]:
        """Return the ``limit`` children of ``path`` with the greatest keys."""
        value = await self.get(path)
        if not isinstance(value, dict) or limit <= 0:
            return {}
        keys = sorted(value)[-limit:]
        return {key: value[key] for key in keys}

    # Writes

    async def set(self, path: str, value: Any) -> None:
        """Replace the subtree at ``path``; ``None`` removes it."""
        await self._commit({normalize_path(path): value})

    async def update(self, path: str, values: dict[str, Any]) -> None:
        """Apply several child writes under ``path`` in one transaction.

        Keys may be relative multi-segment paths (``"users/u1/chats/c1"``).
        ``None`` values delete the addressed node.
        """
        base = normalize_path(path)
        writes = {join_path(base, key): value for key, value in values.items()}
        for target in writes:
            for ancestor in _ancestors(target):
                if ancestor in writes:
                    raise ValueError(f"Overlapping paths in update: {ancestor!r} and {target!r}")
        if writes:
            await self._commit(writes)

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    async def push(self, path: str, value: Any) -> str:
        """Store ``value`` under a freshly generated child key and return the key."""
        key = self.push_key()
        await self.set(join_path(path, key), value)
        return key

    async def transaction(self, path: str, update_fn: Callable[[Any], Any]) -> tuple[bool, Any]:
        """Atomically transform the value at ``path``.

        ``update_fn`` receives a private copy of the current value and
        returns the replacement, or ``ABORT`` to leave the node untouched.
        The read and the write share one database transaction under the
        store's write lock, so concurrent transforms never interleave.

        Returns:
            Tuple of (committed, resulting value)
        """
        path = normalize_path(path)
        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        current = await self._read(session, path)
                        new_value = update_fn(copy.deepcopy(current))
                        if new_value is ABORT:
                            return False, current
                        await self._write(session, path, new_value)
            except SQLAlchemyError as e:
                logger.error(f"Tree store transaction failed at {path}: {str(e)}")
                raise StoreUnavailableError(f"Failed to update {path}") from e

        await self._notify([path])
        return True, new_value

    # Subscriptions

    async def subscribe(self, path: str, callback: Listener) -> Unsubscribe:
        """Deliver the snapshot at ``path`` now and after every overlapping write.

        Returns:
            Callable that detaches the listener; calling it twice is harmless.
        """
        path = normalize_path(path)
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        self._listeners[listener_id] = (path, callback)

        def unsubscribe() -> None:
            self._listeners.pop(listener_id, None)

        await self._deliver(listener_id, path, callback)
        return unsubscribe

    # Private helper methods

    @staticmethod
    def _subtree(path: str):
        return or_(TreeNode.path == path, TreeNode.path.startswith(path + "/", autoescape=True))

    async def _read(self, session: AsyncSession, path: str) -> Any:
        query = select(TreeNode.path, TreeNode.value).order_by(TreeNode.path)
        if path:
            query = query.where(self._subtree(path))
        result = await session.execute(query)
        return _assemble(path, result.all())

    async def _write(self, session: AsyncSession, path: str, value: Any) -> None:
        flat: dict[str, Any] = {}
        _flatten(path, value, flat)

        clear = delete(TreeNode)
        if path:
            clear = clear.where(self._subtree(path))
        await session.execute(clear.execution_options(synchronize_session=False))

        ancestors = _ancestors(path) if path else []
        if ancestors:
            # A leaf stored at an ancestor is replaced by the new subtree
            await session.execute(
                delete(TreeNode)
                .where(TreeNode.path.in_(ancestors))
                .execution_options(synchronize_session=False)
            )

        session.add_all(TreeNode(path=leaf, value=leaf_value) for leaf, leaf_value in flat.items())

    async def _commit(self, writes: dict[str, Any]) -> None:
        async with self._write_lock:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        for path, value in writes.items():
                            await self._write(session, path, value)
            except SQLAlchemyError as e:
                logger.error(f"Tree store write failed at {list(writes)}: {str(e)}")
                raise StoreUnavailableError("Failed to write to tree store", {"paths": list(writes)}) from e

        await self._notify(writes)

    async def _notify(self, written: Iterable[str]) -> None:
        written = list(written)
        affected = [
            (listener_id, path, callback)
            for listener_id, (path, callback) in list(self._listeners.items())
            if any(_overlaps(path, target) for target in written)
        ]
        for listener_id, path, callback in affected:
            # An earlier callback may have unsubscribed this one
            if listener_id in self._listeners:
                await self._deliver(listener_id, path, callback)

    async def _deliver(self, listener_id: int, path: str, callback: Listener) -> None:
        try:
            snapshot = await self.get(path)
            result = callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Listener {listener_id} on {path} failed: {str(e)}")
