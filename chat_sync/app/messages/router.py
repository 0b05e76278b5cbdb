import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from .schemas import (
    EditMessageRequest,
    MarkAllReadResponse,
    MarkReadResponse,
    Message,
    MessageType,
    SendMessageRequest,
)
from ..dependencies import get_blob_store, get_current_identity, get_engine, get_event_publisher
from ..engine import ChatEngine
from ..errors import PermissionDeniedError
from ..media.policy import validate_upload
from ..media.s3_store import S3BlobStore
from ..redis.events import CHAT_READ, MESSAGE_DELETED, MESSAGE_EDITED, MESSAGE_READ, NEW_MESSAGE, EventPublisher
from ..users.identity import Identity, can_moderate

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/chats/{chat_id}', tags=['Messages'])


async def _require_participant(engine: ChatEngine, chat_id: str, current_user: Identity) -> None:
    chat = await engine.registry.get_chat(chat_id)
    if current_user.id not in chat.participants and not can_moderate(current_user.role):
        logger.warning(f"User {current_user.id} is not a participant in chat {chat_id}")
        raise PermissionDeniedError("User is not a participant in this chat")


@router.get('/messages', response_model=List[Message])
async def list_messages(
        chat_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        limit: Optional[int] = Query(None, description="Number of newest messages to return"),
):
    """
    The newest messages of a chat, oldest first.
    """
    await _require_participant(engine, chat_id, current_user)
    return await engine.messages.list_messages(chat_id, limit or engine.settings.message_page_size)


@router.post('/messages', response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(
        chat_id: str,
        request: SendMessageRequest,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
):
    message = await engine.messages.send(chat_id, current_user.id, request.type, request.content, request.media)
    await publisher.publish(NEW_MESSAGE, chat_id, {'message': message.model_dump(mode='json')})
    return message


@router.post('/media', response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_media_message(
        chat_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
        blob_store: Annotated[S3BlobStore, Depends(get_blob_store)],
        file: UploadFile = File(...),
        type: MessageType = Form(MessageType.FILE),
        content: str = Form(''),
):
    """
    Upload an attachment and send it as a media message.

    - **file**: The attachment
    - **type**: image, audio, video or file; decides the size and content type limits
    - **content**: Optional caption
    """
    await _require_participant(engine, chat_id, current_user)
    data = await file.read()
    validate_upload(type, file.content_type, len(data), engine.settings)

    media = await blob_store.put(data, file.filename or 'upload', file.content_type, chat_id, type)
    try:
        message = await engine.messages.send(chat_id, current_user.id, type, content, media)
    except Exception:
        # The message never made it into the log, don't leave the blob behind
        try:
            await blob_store.delete(media.url)
        except Exception as e:
            logger.error(f"Error removing orphaned upload {media.url}: {str(e)}")
        raise

    await publisher.publish(NEW_MESSAGE, chat_id, {'message': message.model_dump(mode='json')})
    return message


@router.patch('/messages/{message_id}', response_model=Message)
async def edit_message(
        chat_id: str,
        message_id: str,
        request: EditMessageRequest,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
):
    message = await engine.messages.edit(chat_id, message_id, request.content, current_user.id)
    await publisher.publish(MESSAGE_EDITED, chat_id, {'message': message.model_dump(mode='json')})
    return message


@router.delete('/messages/{message_id}', response_model=Message)
async def delete_message(
        chat_id: str,
        message_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
        blob_store: Annotated[S3BlobStore, Depends(get_blob_store)],
):
    """
    Delete a message. Senders can delete their own messages, admins any message.
    """
    message = await engine.messages.delete(chat_id, message_id, current_user.id)
    if message.media is not None:
        try:
            await blob_store.delete(message.media.url)
        except Exception as e:
            logger.error(f"Error deleting attachment of message {message_id}: {str(e)}")

    await publisher.publish(MESSAGE_DELETED, chat_id, {'messageId': message_id, 'userId': current_user.id})
    return message


@router.post('/messages/{message_id}/read', response_model=MarkReadResponse)
async def mark_message_read(
        chat_id: str,
        message_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
):
    marked = await engine.messages.mark_read(chat_id, message_id, current_user.id)
    if marked:
        await publisher.publish(MESSAGE_READ, chat_id, {'messageId': message_id, 'userId': current_user.id})
    return MarkReadResponse(marked=marked)


@router.post('/mark_all_read', response_model=MarkAllReadResponse)
async def mark_all_read(
        chat_id: str,
        current_user: Annotated[Identity, Depends(get_current_identity)],
        engine: Annotated[ChatEngine, Depends(get_engine)],
        publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
):
    """
    Mark every message in the chat as read for the caller and reset their unread count.
    """
    count = await engine.messages.mark_all_read(chat_id, current_user.id)
    await publisher.publish(CHAT_READ, chat_id, {'userId': current_user.id, 'messagesRead': count})
    return MarkAllReadResponse(messagesRead=count)
