from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

OnChange = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class StoreAdapter(ABC):
    """
    Keyed access to a hierarchical JSON tree addressed by slash-delimited paths
    (``chats/<chatId>/unreadCount/<uid>``).

    The store offers no multi-key transactions. The only coordination primitive
    is ``set_if_unchanged``: a write that succeeds only if the value at the path
    still carries the version returned by ``get_with_version``.

    Writing ``None`` (through ``set`` or as a value in ``update``) removes the
    node, and empty objects are never stored, mirroring Firebase Realtime
    Database semantics.
    """

    @abstractmethod
    async def get(self, path: str) -> Optional[Any]:
        """Return the value at ``path``, or None if absent."""

    @abstractmethod
    async def get_with_version(self, path: str) -> Tuple[Optional[Any], str]:
        """Return the value at ``path`` together with an opaque version token."""

    @abstractmethod
    async def set(self, path: str, value: Any) -> None:
        """Overwrite the value at ``path``."""

    @abstractmethod
    async def set_if_unchanged(self, path: str, expected_version: str, value: Any) -> bool:
        """
        Overwrite the value at ``path`` only if its version is still ``expected_version``.

        Returns:
            bool: False if a concurrent write changed the value first.
        """

    @abstractmethod
    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into ``path``; each key is a sub-path relative to it."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the node at ``path``."""

    @abstractmethod
    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        """
        Call ``on_change`` with the full value at ``path`` once right away and
        again whenever anything at or under ``path`` changes.

        Returns:
            Callable: stops the notifications when called.
        """
