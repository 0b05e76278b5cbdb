import logging
from typing import Any, Callable

from .base import StoreAdapter
from ..errors import ConflictError

logger = logging.getLogger(__name__)

# Returned by a mutator to leave the stored value as it is
SKIP = object()


async def compare_and_set(
        store: StoreAdapter,
        path: str,
        mutate: Callable[[Any], Any],
        max_attempts: int,
) -> Any:
    """
    Optimistic read-modify-write of a single store path.

    Reads the value and its version, computes the next value with ``mutate``
    and writes it only if nobody else wrote in between. Losing the race means
    reading again and recomputing, immediately, up to ``max_attempts`` times.

    Args:
        store: The store holding the value
        path: Slash-delimited path of the value
        mutate: Receives a private copy of the current value (None if absent) and
            returns the next value, or ``SKIP`` to leave it untouched. Errors it
            raises abort the loop and propagate unchanged.
        max_attempts: Upper bound on read-compute-write rounds

    Returns:
        The value stored at ``path`` once the loop ends.

    Raises:
        ConflictError: If every attempt lost to a concurrent write
    """
    for attempt in range(1, max_attempts + 1):
        current, version = await store.get_with_version(path)
        desired = mutate(current)
        if desired is SKIP:
            return current
        if await store.set_if_unchanged(path, version, desired):
            return desired
        logger.debug(f"Concurrent write on {path}, retrying ({attempt}/{max_attempts})")

    logger.warning(f"Gave up writing {path} after {max_attempts} conflicting attempts")
    raise ConflictError(f"Too many concurrent updates to {path}, please retry")
