import asyncio
import copy
import hashlib
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import OnChange, StoreAdapter, Unsubscribe
from .paths import split_path

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> Any:
    """Deep copy ``value`` the way the Realtime Database stores it: no nulls, no empty objects."""
    if isinstance(value, dict):
        cleaned = {}
        for key, child in value.items():
            child = _normalize(child)
            if child is not None:
                cleaned[str(key)] = child
        return cleaned or None
    if isinstance(value, (list, tuple)):
        items = [_normalize(item) for item in value]
        return items or None
    return copy.deepcopy(value)


def version_of(value: Any) -> str:
    payload = json.dumps(value, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


class MemoryStore(StoreAdapter):
    """
    In-process store used in DEV and in tests.

    Every operation yields to the event loop once before touching the tree, so
    concurrent coroutines interleave the way they would around network
    round-trips. The read or write itself is atomic.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._root: Dict[str, Any] = _normalize(initial) or {}
        self._listeners: Dict[int, Tuple[List[str], OnChange]] = {}
        self._next_listener_id = 0

    def _read(self, parts: List[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _write(self, parts: List[str], value: Any) -> None:
        value = _normalize(value)
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        node = self._root
        chain = []
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            chain.append((node, part))
            node = child

        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value

        # Drop ancestors left empty by a removal
        for parent, key in reversed(chain):
            if parent[key]:
                break
            del parent[key]

    def _commit(self, mutation: Callable[[], None]) -> None:
        before = {listener_id: self._read(parts) for listener_id, (parts, _) in self._listeners.items()}
        mutation()
        for listener_id, (parts, on_change) in list(self._listeners.items()):
            after = self._read(parts)
            if after != before.get(listener_id):
                self._notify(on_change, after)

    @staticmethod
    def _notify(on_change: OnChange, value: Any) -> None:
        try:
            on_change(value)
        except Exception as e:
            logger.error(f"Store listener raised: {str(e)}", exc_info=True)

    async def get(self, path: str) -> Optional[Any]:
        await asyncio.sleep(0)
        return self._read(split_path(path))

    async def get_with_version(self, path: str) -> Tuple[Optional[Any], str]:
        await asyncio.sleep(0)
        value = self._read(split_path(path))
        return value, version_of(value)

    async def set(self, path: str, value: Any) -> None:
        await asyncio.sleep(0)
        self._commit(lambda: self._write(split_path(path), value))

    async def set_if_unchanged(self, path: str, expected_version: str, value: Any) -> bool:
        await asyncio.sleep(0)
        parts = split_path(path)
        if version_of(self._read(parts)) != expected_version:
            return False
        self._commit(lambda: self._write(parts, value))
        return True

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        if not fields:
            raise ValueError("update() requires a non-empty dictionary")
        await asyncio.sleep(0)
        base = split_path(path)

        def apply():
            for sub_path, value in fields.items():
                self._write(base + split_path(sub_path), value)

        self._commit(apply)

    async def delete(self, path: str) -> None:
        await asyncio.sleep(0)
        self._commit(lambda: self._write(split_path(path), None))

    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        listener_id = self._next_listener_id
        self._next_listener_id += 1
        parts = split_path(path)
        self._listeners[listener_id] = (parts, on_change)
        self._notify(on_change, self._read(parts))

        def unsubscribe():
            self._listeners.pop(listener_id, None)

        return unsubscribe
