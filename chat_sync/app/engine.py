import logging
from typing import Optional

from .chats.registry import ChatRegistry
from .config import Settings, settings as default_settings
from .messages.log import MessageLog, ProjectionFailureHandler
from .search.index import SearchIndex
from .store.base import StoreAdapter
from .store.memory import MemoryStore
from .time_utils import MonotonicClock
from .unread.tracker import UnreadCounterTracker
from .users.identity import IdentityAdapter, StoreIdentityAdapter

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> StoreAdapter:
    """Create the store adapter selected by ``STORE_BACKEND``"""
    if settings.store_backend == 'firebase':
        # Imported lazily so the memory backend never needs Firebase credentials
        from .firebase import FirebaseStore
        logger.info(f"Using Firebase Realtime Database at {settings.firebase_db_url}")
        return FirebaseStore(retry_attempts=settings.store_retry_attempts,
                             retry_backoff=settings.store_retry_backoff)
    logger.info("Using in-memory store")
    return MemoryStore()


class ChatEngine:
    """
    Wires the chat components around one store.

    All components share a single clock, so every timestamp this engine hands
    out is non-decreasing.
    """

    def __init__(
            self,
            store: StoreAdapter,
            identity: Optional[IdentityAdapter] = None,
            clock: Optional[MonotonicClock] = None,
            settings: Settings = default_settings,
            on_projection_failure: Optional[ProjectionFailureHandler] = None,
    ):
        self.store = store
        self.identity = identity or StoreIdentityAdapter(store)
        self.clock = clock or MonotonicClock()
        self.settings = settings

        self.tracker = UnreadCounterTracker(store, max_attempts=settings.counter_max_attempts)
        self.registry = ChatRegistry(
            store,
            self.identity,
            clock=self.clock,
            max_attempts=settings.counter_max_attempts,
            preview_max_length=settings.preview_max_length,
        )
        self.messages = MessageLog(
            store,
            self.identity,
            self.registry,
            self.tracker,
            clock=self.clock,
            max_attempts=settings.counter_max_attempts,
            on_projection_failure=on_projection_failure,
        )
        self.search = SearchIndex(self.registry)
