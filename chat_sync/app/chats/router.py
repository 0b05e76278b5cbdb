import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, Query, status

from .schemas import AddParticipantRequest, Chat, CreateChatRequest
from ..dependencies import get_current_identity, get_engine
from ..engine import ChatEngine
from ..errors import PermissionDeniedError
from ..pagination import PaginatedResponse, PaginationParams, common_pagination_parameters
from ..users.identity import Identity, can_moderate

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/chats', tags=['Chats'])


@router.post('', response_model=Chat, status_code=status.HTTP_201_CREATED)
async def create_chat(
        request: CreateChatRequest,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
):
    """
    Create a direct or group chat. The caller must be one of the participants.
    """
    return await engine.registry.create_chat(
        request.participants,
        current_user.id,
        is_group=request.isGroup,
        group_name=request.groupName,
        group_photo=request.groupPhotoURL,
    )


@router.get('', response_model=PaginatedResponse[Chat])
async def list_chats(
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        pagination: Annotated[PaginationParams, Depends(common_pagination_parameters)],
):
    """
    The caller's chats, most recently active first.
    """
    chats = await engine.registry.list_chats_for(current_user.id)
    return PaginatedResponse[Chat].create(chats, pagination)


@router.get('/search', response_model=List[Chat])
async def search_chats(
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        q: str = Query('', description="Matches group names and participant display names"),
):
    return await engine.search.search(q, current_user.id)


@router.get('/{chat_id}', response_model=Chat)
async def get_chat(
        chat_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
):
    chat = await engine.registry.get_chat(chat_id)
    if current_user.id not in chat.participants and not can_moderate(current_user.role):
        logger.warning(f"User {current_user.id} is not a participant in chat {chat_id}")
        raise PermissionDeniedError("User is not a participant in this chat")
    return chat


@router.post('/{chat_id}/participants', response_model=Chat)
async def add_participant(
        chat_id: str,
        request: AddParticipantRequest,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
):
    return await engine.registry.add_participant(chat_id, request.userId, current_user.id)


@router.delete('/{chat_id}/participants/{user_id}', response_model=Chat)
async def remove_participant(
        chat_id: str,
        user_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
):
    """
    Remove a participant from a group chat, or leave it when ``user_id`` is the caller.
    """
    return await engine.registry.remove_participant(chat_id, user_id, current_user.id)
