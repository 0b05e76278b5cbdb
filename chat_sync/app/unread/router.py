import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query

from .schemas import RecomputeUnreadResponse, RepairUnreadResponse, UnreadInconsistency
from ..dependencies import get_current_identity, get_engine
from ..engine import ChatEngine
from ..errors import PermissionDeniedError
from ..users.identity import Identity, can_moderate

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/maintenance', tags=['Maintenance'])


def _require_admin(current_user: Identity) -> None:
    if not can_moderate(current_user.role):
        logger.warning(f"User {current_user.id} attempted an admin maintenance operation")
        raise PermissionDeniedError("Admin access required")


@router.post('/recompute_unread', response_model=RecomputeUnreadResponse)
async def recompute_unread(
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        chat_id: Optional[str] = Query(None, description="Recompute only this chat"),
):
    """
    Recount the caller's unread messages from the message log, in one chat or all of them.
    """
    result = await engine.tracker.recompute_for_user(current_user.id, chat_id)
    logger.info(f"Recomputed unread counts for user {current_user.id}: {result['fixed_counts']} fixed")
    return RecomputeUnreadResponse(**result)


@router.post('/find_inconsistencies', response_model=List[UnreadInconsistency])
async def find_inconsistencies(
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
):
    """
    Find stored unread counts that disagree with the message log (admin only).
    """
    _require_admin(current_user)
    return [UnreadInconsistency(**item) for item in await engine.tracker.find_inconsistencies()]


@router.post('/repair_all_unread_counts', response_model=RepairUnreadResponse)
async def repair_all_unread_counts(
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
):
    """
    Fix every unread count inconsistency (admin only).
    """
    _require_admin(current_user)
    return RepairUnreadResponse(**await engine.tracker.repair_all())
