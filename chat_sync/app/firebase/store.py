import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import tenacity
from firebase_admin import exceptions

from .firebase import FirebaseDB
from ..store.base import OnChange, StoreAdapter, Unsubscribe

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    exceptions.UnavailableError,
    exceptions.DeadlineExceededError,
    exceptions.InternalError,
)


class FirebaseStore(StoreAdapter):
    """
    Store adapter over the Firebase Realtime Database.

    Versions are the database ETags. The admin SDK is blocking, so every call
    runs in a worker thread; transport failures are retried here so that the
    layers above never see them twice.
    """

    def __init__(self, firebase_db: Optional[FirebaseDB] = None, retry_attempts: int = 3,
                 retry_backoff: float = 0.2):
        self.firebase_db = firebase_db or FirebaseDB()
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    async def _call(self, fn, *args, **kwargs):
        retrying = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.retry_attempts),
            wait=tenacity.wait_incrementing(start=self.retry_backoff, increment=self.retry_backoff),
            retry=tenacity.retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await asyncio.to_thread(fn, *args, **kwargs)

    async def get(self, path: str) -> Optional[Any]:
        return await self._call(self.firebase_db.reference(path).get)

    async def get_with_version(self, path: str) -> Tuple[Optional[Any], str]:
        value, etag = await self._call(self.firebase_db.reference(path).get, etag=True)
        return value, etag

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self.delete(path)
            return
        await self._call(self.firebase_db.reference(path).set, value)

    async def set_if_unchanged(self, path: str, expected_version: str, value: Any) -> bool:
        # The SDK rejects None here; writing an empty object removes the node instead
        if value is None:
            value = {}
        success, _, _ = await self._call(
            self.firebase_db.reference(path).set_if_unchanged, expected_version, value
        )
        return success

    async def update(self, path: str, fields: Dict[str, Any]) -> None:
        await self._call(self.firebase_db.reference(path).update, fields)

    async def delete(self, path: str) -> None:
        await self._call(self.firebase_db.reference(path).delete)

    def subscribe(self, path: str, on_change: OnChange) -> Unsubscribe:
        ref = self.firebase_db.reference(path)

        # Listener events carry deltas; hand subscribers the full value instead
        def handle(event):
            try:
                on_change(ref.get())
            except Exception as e:
                logger.error(f"Error handling change on {path}: {str(e)}", exc_info=True)

        registration = ref.listen(handle)
        logger.info(f"Listening for changes on {path}")
        return registration.close
