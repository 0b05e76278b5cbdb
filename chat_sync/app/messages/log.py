import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .schemas import MediaRef, Message, MessageType, ProjectionFailure
from ..chats.registry import ChatRegistry
from ..chats.schemas import Chat
from ..errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ..store.base import StoreAdapter, Unsubscribe
from ..store.optimistic import SKIP, compare_and_set
from ..store.paths import message_path, messages_path
from ..time_utils import MonotonicClock
from ..unread.tracker import UnreadCounterTracker
from ..users.identity import IdentityAdapter

logger = logging.getLogger(__name__)

ProjectionFailureHandler = Callable[[ProjectionFailure], Awaitable[None]]


def _is_message(msg_data) -> bool:
    # A node without a sender is a leftover field write, not a message
    return isinstance(msg_data, dict) and 'senderId' in msg_data


def parse_messages(chat_id: str, messages_data: Optional[Dict[str, dict]]) -> List[Message]:
    """Messages of a chat in display order: ascending (timestamp, id)"""
    messages = []
    for message_id, msg_data in (messages_data or {}).items():
        try:
            messages.append(Message.model_validate({**msg_data, 'id': message_id, 'chatId': chat_id}))
        except (PydanticValidationError, TypeError) as e:
            logger.warning(f"Skipping malformed message {message_id} in chat {chat_id}: {str(e)}")
    messages.sort(key=Message.sort_key)
    return messages


class MessageLog:
    """
    Append-only message streams stored at ``messages/<chatId>/<messageId>``.

    Every mutation that can change a chat's newest message, or somebody's
    unread messages, is followed by compensating updates of the chat's
    denormalized fields. Those updates never undo the message write: a
    failure is logged and handed to ``on_projection_failure``.
    """

    def __init__(
            self,
            store: StoreAdapter,
            identity: IdentityAdapter,
            registry: ChatRegistry,
            tracker: UnreadCounterTracker,
            clock: Optional[MonotonicClock] = None,
            max_attempts: int = 3,
            on_projection_failure: Optional[ProjectionFailureHandler] = None,
    ):
        self.store = store
        self.identity = identity
        self.registry = registry
        self.tracker = tracker
        self.clock = clock or MonotonicClock()
        self.max_attempts = max_attempts
        self.on_projection_failure = on_projection_failure

    @staticmethod
    def _require_participant(chat: Chat, user_id: str) -> None:
        if user_id not in chat.participants:
            logger.warning(f"User {user_id} is not a participant in chat {chat.id}")
            raise PermissionDeniedError("User is not a participant in this chat")

    @staticmethod
    def _validate_content(message_type: MessageType, content: str, media: Optional[MediaRef]) -> None:
        if message_type == MessageType.TEXT:
            if not content or not content.strip():
                raise ValidationError("Content is required")
            if media is not None:
                raise ValidationError("Text messages cannot carry media")
        elif media is None:
            raise ValidationError(f"{message_type.value} messages require a media reference")

    async def _report_projection_failure(self, chat_id: str, message_id: str, projection: str,
                                         error: Exception) -> None:
        logger.error(f"Error updating {projection} after message {message_id} in chat {chat_id}: {str(error)}")
        if self.on_projection_failure is None:
            return
        failure = ProjectionFailure(chatId=chat_id, messageId=message_id, projection=projection, error=str(error))
        try:
            await self.on_projection_failure(failure)
        except Exception as e:
            logger.error(f"Error reporting projection failure: {str(e)}")

    async def _sender_details(self, chat: Chat, sender_id: str):
        try:
            profile = await self.identity.lookup(sender_id)
            return profile.displayName, profile.photoURL
        except NotFoundError:
            info = chat.participantsInfo.get(sender_id)
            if info is None:
                raise
            return info.displayName, info.photoURL

    async def send(self, chat_id: str, sender_id: str, type: MessageType, content: str,
                   media: Optional[MediaRef] = None) -> Message:
        """
        Append a message to a chat.

        Args:
            chat_id: The chat to send to
            sender_id: The sending user, who must currently be a participant
            type: Message type
            content: Text body, or caption for media messages
            media: Blob store reference, required for every non-text type

        Returns:
            Message: The persisted message

        Raises:
            ValidationError: If content or media don't fit the message type
            NotFoundError: If the chat doesn't exist
            PermissionDeniedError: If the sender is not a participant
        """
        try:
            message_type = MessageType(type)
        except ValueError:
            raise ValidationError(f"Invalid message type. Must be one of: {[m.value for m in MessageType]}")
        self._validate_content(message_type, content, media)

        # Re-read the chat so a removed participant can't keep sending
        chat = await self.registry.get_chat(chat_id)
        self._require_participant(chat, sender_id)
        sender_name, sender_photo = await self._sender_details(chat, sender_id)

        message = Message(
            id=str(uuid.uuid4()),
            chatId=chat_id,
            senderId=sender_id,
            senderName=sender_name,
            senderPhotoURL=sender_photo,
            type=message_type,
            content=content,
            media=media,
            timestamp=self.clock.now(),
        )
        await self.store.set(message_path(chat_id, message.id), message.to_store())
        logger.info(f"Message {message.id} saved for chat {chat_id}")

        # Both projections are attempted regardless of the other's outcome
        try:
            await self._promote_preview(chat_id, message)
        except Exception as e:
            await self._report_projection_failure(chat_id, message.id, 'lastMessage', e)

        try:
            await self.tracker.on_message_sent(chat_id, sender_id)
        except Exception as e:
            await self._report_projection_failure(chat_id, message.id, 'unreadCount', e)

        return message

    async def _promote_preview(self, chat_id: str, message: Message) -> bool:
        """
        Make ``message`` the chat's preview unless a newer message already is.

        Concurrent senders may finish out of order; the conditional write makes
        the preview converge on the greatest (timestamp, id) either way.
        """
        for attempt in range(1, self.max_attempts + 1):
            preview, version = await self.registry.get_last_message(chat_id)
            if preview is not None and preview.sort_key() > message.sort_key():
                return False
            if await self.registry.apply_last_message(chat_id, message, expected_version=version):
                await self._settle_preview(chat_id, message)
                return True
            logger.debug(f"Preview of chat {chat_id} changed concurrently ({attempt}/{self.max_attempts})")
        raise ConflictError(f"Too many concurrent updates to the preview of chat {chat_id}")

    async def _refresh_preview(self, chat_id: str, message: Message) -> bool:
        """Rewrite the preview with ``message`` if the preview already shows it."""
        for attempt in range(1, self.max_attempts + 1):
            preview, version = await self.registry.get_last_message(chat_id)
            if preview is None or preview.id != message.id:
                return False
            if await self.registry.apply_last_message(chat_id, message, expected_version=version):
                await self._settle_preview(chat_id, message)
                return True
            logger.debug(f"Preview of chat {chat_id} changed concurrently ({attempt}/{self.max_attempts})")
        raise ConflictError(f"Too many concurrent updates to the preview of chat {chat_id}")

    async def _settle_preview(self, chat_id: str, written: Message) -> None:
        """
        Check the message just written into the preview against the log.

        A delete or edit that finished while the write was in flight saw the
        old preview and left it alone, so the follow-up falls to this writer.
        """
        msg_data = await self.store.get(message_path(chat_id, written.id))
        if not _is_message(msg_data):
            await self._recompute_preview(chat_id, written)
        elif msg_data.get('content', '') != written.content:
            current = Message.model_validate({**msg_data, 'id': written.id, 'chatId': chat_id})
            await self._refresh_preview(chat_id, current)

    async def _recompute_preview(self, chat_id: str, deleted: Message) -> None:
        for attempt in range(1, self.max_attempts + 1):
            preview, version = await self.registry.get_last_message(chat_id)
            if preview is None or preview.id != deleted.id:
                return
            messages = await self.list_messages(chat_id, 1)
            if messages:
                applied = await self.registry.apply_last_message(chat_id, messages[-1], expected_version=version)
            else:
                applied = await self.registry.clear_last_message(chat_id, expected_version=version)
            if applied:
                return
        raise ConflictError(f"Too many concurrent updates to the preview of chat {chat_id}")

    async def get_message(self, chat_id: str, message_id: str) -> Message:
        msg_data = await self.store.get(message_path(chat_id, message_id))
        if not _is_message(msg_data):
            raise NotFoundError("Message not found")
        try:
            return Message.model_validate({**msg_data, 'id': message_id, 'chatId': chat_id})
        except PydanticValidationError as e:
            logger.warning(f"Malformed message {message_id} in chat {chat_id}: {str(e)}")
            raise NotFoundError("Message not found")

    async def edit(self, chat_id: str, message_id: str, new_content: str, actor_id: str) -> Message:
        """
        Replace the content of a message. Only its sender may edit it.

        Raises:
            NotFoundError: If the message doesn't exist
            PermissionDeniedError: If the actor is not the sender
            ValidationError: If a text message would end up empty
        """
        now = self.clock.now()

        def mutate(msg_data):
            if not _is_message(msg_data):
                raise NotFoundError("Message not found")
            if msg_data.get('senderId') != actor_id:
                raise PermissionDeniedError("You can only edit your own messages")
            if msg_data.get('type', MessageType.TEXT.value) == MessageType.TEXT.value and not new_content.strip():
                raise ValidationError("Content is required")
            msg_data.update(content=new_content, isEdited=True, editedAt=now)
            return msg_data

        msg_data = await compare_and_set(self.store, message_path(chat_id, message_id), mutate, self.max_attempts)
        message = Message.model_validate({**msg_data, 'id': message_id, 'chatId': chat_id})
        logger.info(f"Message {message_id} in chat {chat_id} edited by {actor_id}")

        # An edit never makes a message newer, only a preview showing it changes
        try:
            await self._refresh_preview(chat_id, message)
        except Exception as e:
            await self._report_projection_failure(chat_id, message_id, 'lastMessage', e)
        return message

    async def delete(self, chat_id: str, message_id: str, actor_id: str) -> Message:
        """
        Remove a message from the log. Allowed for its sender and privileged users.

        Returns:
            Message: The message as it was when removed
        """
        message = await self.get_message(chat_id, message_id)
        if actor_id != message.senderId and not await self.identity.is_privileged(actor_id):
            raise PermissionDeniedError("You can only delete your own messages")

        removed = {}

        def mutate(msg_data):
            if not _is_message(msg_data):
                raise NotFoundError("Message not found")
            removed.clear()
            removed.update(msg_data)
            return None

        await compare_and_set(self.store, message_path(chat_id, message_id), mutate, self.max_attempts)
        message = Message.model_validate({**removed, 'id': message_id, 'chatId': chat_id})
        logger.info(f"Message {message_id} deleted from chat {chat_id} by {actor_id}")

        try:
            await self._recompute_preview(chat_id, message)
        except Exception as e:
            await self._report_projection_failure(chat_id, message_id, 'lastMessage', e)

        if not message.isRead:
            try:
                await self.tracker.on_message_deleted(chat_id, message.senderId)
            except Exception as e:
                await self._report_projection_failure(chat_id, message_id, 'unreadCount', e)
        return message

    async def mark_read(self, chat_id: str, message_id: str, reader_id: str) -> bool:
        """
        Mark a message as read.

        Reading an already read message, or one's own message, changes nothing.

        Returns:
            bool: True if this call marked the message read
        """
        chat = await self.registry.get_chat(chat_id)
        self._require_participant(chat, reader_id)
        now = self.clock.now()
        outcome = {'marked': False}

        def mutate(msg_data):
            outcome['marked'] = False
            if not _is_message(msg_data):
                raise NotFoundError("Message not found")
            if msg_data.get('isRead') or msg_data.get('senderId') == reader_id:
                return SKIP
            msg_data.update(isRead=True, readAt=now)
            outcome['marked'] = True
            return msg_data

        await compare_and_set(self.store, message_path(chat_id, message_id), mutate, self.max_attempts)
        if not outcome['marked']:
            logger.info(f"Message {message_id} was already read or sent by user {reader_id}")
            return False

        logger.info(f"Message {message_id} marked as read by user {reader_id}")
        try:
            await self.tracker.on_message_read(chat_id, reader_id, 1)
        except Exception as e:
            await self._report_projection_failure(chat_id, message_id, 'unreadCount', e)
        return True

    async def mark_all_read(self, chat_id: str, reader_id: str) -> int:
        """
        Mark every message the reader hasn't sent as read and zero their counter.

        Returns:
            int: Number of messages newly marked read

        Raises:
            ConflictError: If a message or the counter reset kept losing to
                concurrent writes; calling again is safe
        """
        chat = await self.registry.get_chat(chat_id)
        self._require_participant(chat, reader_id)
        now = self.clock.now()

        marked = 0
        for message in await self.list_messages(chat_id, None):
            if message.senderId == reader_id or message.isRead:
                continue
            outcome = {'marked': False}

            # Per message, so a message deleted since the listing stays deleted
            def mutate(msg_data, outcome=outcome):
                outcome['marked'] = False
                if not _is_message(msg_data) or msg_data.get('isRead') or msg_data.get('senderId') == reader_id:
                    return SKIP
                msg_data.update(isRead=True, readAt=now)
                outcome['marked'] = True
                return msg_data

            await compare_and_set(self.store, message_path(chat_id, message.id), mutate, self.max_attempts)
            if outcome['marked']:
                marked += 1

        if marked:
            logger.info(f"Marked {marked} messages as read for user {reader_id} in chat {chat_id}")

        await self.tracker.reset(chat_id, reader_id)
        return marked

    async def list_messages(self, chat_id: str, limit: Optional[int] = 50) -> List[Message]:
        """
        The newest ``limit`` messages of a chat, oldest first. ``None`` returns all.

        Raises:
            ValidationError: If limit is smaller than 1
        """
        if limit is not None and limit < 1:
            raise ValidationError("limit must be at least 1")
        messages = parse_messages(chat_id, await self.store.get(messages_path(chat_id)))
        return messages if limit is None else messages[-limit:]

    def watch_messages(self, chat_id: str, limit: int, on_change: Callable[[List[Message]], None]) -> Unsubscribe:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        return self.store.subscribe(
            messages_path(chat_id),
            lambda messages_data: on_change(parse_messages(chat_id, messages_data)[-limit:]),
        )
