import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .schemas import Chat, LastMessagePreview, ParticipantInfo
from ..errors import (
    AlreadyMemberError,
    NotAuthenticatedError,
    NotFoundError,
    NotGroupError,
    NotMemberError,
    PermissionDeniedError,
    ValidationError,
)
from ..messages.schemas import Message
from ..store.base import StoreAdapter, Unsubscribe
from ..store.optimistic import compare_and_set
from ..store.paths import CHATS_PATH, chat_path, last_message_path
from ..time_utils import MonotonicClock
from ..users.identity import IdentityAdapter

logger = logging.getLogger(__name__)


def chats_for_user(chats_data: Optional[Dict[str, Any]], user_id: str) -> List[Chat]:
    """
    Build the ordered chat list of a user from the raw ``chats`` node.

    Most recently active first: by last message time, or creation time for
    chats without messages.
    """
    chats = []
    for chat_id, data in (chats_data or {}).items():
        if not isinstance(data, dict) or user_id not in data.get('participants', []):
            continue
        chats.append(Chat.from_store(chat_id, data))
    chats.sort(key=lambda chat: (chat.activity_at(), chat.id), reverse=True)
    return chats


class ChatRegistry:
    """Owns chats, their membership and their denormalized summary fields."""

    def __init__(self, store: StoreAdapter, identity: IdentityAdapter, clock: Optional[MonotonicClock] = None,
                 max_attempts: int = 3, preview_max_length: int = 100):
        self.store = store
        self.identity = identity
        self.clock = clock or MonotonicClock()
        self.max_attempts = max_attempts
        self.preview_max_length = preview_max_length

    async def _participant_info(self, user_id: str) -> ParticipantInfo:
        profile = await self.identity.lookup(user_id)
        return ParticipantInfo(
            uid=profile.uid,
            displayName=profile.displayName,
            photoURL=profile.photoURL,
            role=profile.role,
            joinedAt=self.clock.now(),
        )

    async def create_chat(
            self,
            participant_ids: List[str],
            creator_id: str,
            is_group: bool = False,
            group_name: Optional[str] = None,
            group_photo: Optional[str] = None,
    ) -> Chat:
        """
        Create a direct or group chat.

        Args:
            participant_ids: Users taking part, creator included
            creator_id: The user creating the chat
            is_group: Group chats accept any number (>= 2) of participants, direct chats exactly 2
            group_name: Optional display name of a group
            group_photo: Optional photo URL of a group

        Returns:
            Chat: The persisted chat, every unread count at zero

        Raises:
            NotAuthenticatedError: If there is no caller identity
            ValidationError: If the participant list is degenerate
            NotFoundError: If a participant is unknown to the identity provider
        """
        if self.identity.current_identity() is None:
            raise NotAuthenticatedError("You must be authenticated to create a chat")

        participants = list(dict.fromkeys(participant_ids))
        if len(participants) < 2:
            raise ValidationError("A chat needs at least 2 distinct participants")
        if creator_id not in participants:
            raise ValidationError("The creator must be one of the participants")
        if not is_group and len(participants) != 2:
            raise ValidationError("Direct chats must have exactly 2 participants")

        participants_info = {}
        for user_id in participants:
            participants_info[user_id] = await self._participant_info(user_id)

        chat = Chat(
            id=str(uuid.uuid4()),
            participants=participants,
            participantsInfo=participants_info,
            createdBy=creator_id,
            createdAt=self.clock.now(),
            isGroup=is_group,
            groupName=group_name if is_group else None,
            groupPhotoURL=group_photo if is_group else None,
            unreadCount={user_id: 0 for user_id in participants},
        )
        await self.store.set(chat_path(chat.id), chat.to_store())
        logger.info(f"Chat {chat.id} created by {creator_id} with {len(participants)} participants")
        return chat

    async def get_chat(self, chat_id: str) -> Chat:
        data = await self.store.get(chat_path(chat_id))
        if not data:
            raise NotFoundError(f"Chat {chat_id} not found")
        return Chat.from_store(chat_id, data)

    async def list_chats_for(self, user_id: str) -> List[Chat]:
        return chats_for_user(await self.store.get(CHATS_PATH), user_id)

    def watch_chats_for(self, user_id: str, on_change: Callable[[List[Chat]], None]) -> Unsubscribe:
        """Call ``on_change`` with the user's ordered chat list now and after every change."""
        return self.store.subscribe(CHATS_PATH, lambda chats_data: on_change(chats_for_user(chats_data, user_id)))

    async def add_participant(self, chat_id: str, user_id: str, actor_id: str) -> Chat:
        """
        Add a user to a group chat.

        Any current participant, or a privileged user, may add members.
        """
        chat = await self.get_chat(chat_id)
        privileged = await self.identity.is_privileged(actor_id)
        self._check_can_add(chat, user_id, actor_id, privileged)
        info = await self._participant_info(user_id)

        # Membership is re-checked against every fresh read
        def mutate(data):
            if not data:
                raise NotFoundError(f"Chat {chat_id} not found")
            current = Chat.from_store(chat_id, data)
            self._check_can_add(current, user_id, actor_id, privileged)
            current.participants.append(user_id)
            current.participantsInfo[user_id] = info
            current.unreadCount[user_id] = 0
            return current.to_store()

        data = await compare_and_set(self.store, chat_path(chat_id), mutate, self.max_attempts)
        logger.info(f"User {user_id} added to chat {chat_id} by {actor_id}")
        return Chat.from_store(chat_id, data)

    @staticmethod
    def _check_can_add(chat: Chat, user_id: str, actor_id: str, privileged: bool) -> None:
        if not chat.isGroup:
            raise NotGroupError("Participants can only be added to group chats")
        if actor_id not in chat.participants and not privileged:
            raise PermissionDeniedError("You don't have permission to add participants")
        if user_id in chat.participants:
            raise AlreadyMemberError(f"User {user_id} is already a participant of this chat")

    async def remove_participant(self, chat_id: str, user_id: str, actor_id: str) -> Chat:
        """
        Remove a user from a group chat.

        Allowed for the chat creator, privileged users, and the user themself (leaving).
        """
        chat = await self.get_chat(chat_id)
        privileged = False
        if not chat.isGroup:
            raise NotGroupError("Participants can only be removed from group chats")
        if actor_id != chat.createdBy and actor_id != user_id:
            privileged = await self.identity.is_privileged(actor_id)
        self._check_can_remove(chat, user_id, actor_id, privileged)

        def mutate(data):
            if not data:
                raise NotFoundError(f"Chat {chat_id} not found")
            current = Chat.from_store(chat_id, data)
            self._check_can_remove(current, user_id, actor_id, privileged)
            current.participants.remove(user_id)
            current.participantsInfo.pop(user_id, None)
            current.unreadCount.pop(user_id, None)
            return current.to_store()

        data = await compare_and_set(self.store, chat_path(chat_id), mutate, self.max_attempts)
        logger.info(f"User {user_id} removed from chat {chat_id} by {actor_id}")
        return Chat.from_store(chat_id, data)

    @staticmethod
    def _check_can_remove(chat: Chat, user_id: str, actor_id: str, privileged: bool) -> None:
        if not chat.isGroup:
            raise NotGroupError("Participants can only be removed from group chats")
        if actor_id != chat.createdBy and actor_id != user_id and not privileged:
            raise PermissionDeniedError("You don't have permission to remove participants")
        if user_id not in chat.participants:
            raise NotMemberError(f"User {user_id} is not a participant of this chat")

    async def get_last_message(self, chat_id: str) -> Tuple[Optional[LastMessagePreview], str]:
        data, version = await self.store.get_with_version(last_message_path(chat_id))
        preview = LastMessagePreview.model_validate(data) if data else None
        return preview, version

    async def apply_last_message(self, chat_id: str, message: Message,
                                 expected_version: Optional[str] = None) -> bool:
        """
        Overwrite the chat's last message preview with ``message``.

        No ordering is enforced here. Without ``expected_version`` the write is
        unconditional; with it, the write only lands if the preview is unchanged.

        Returns:
            bool: False if the conditional write lost to a concurrent one
        """
        preview = LastMessagePreview.from_message(message, self.preview_max_length)
        path = last_message_path(chat_id)
        if expected_version is None:
            await self.store.set(path, preview.model_dump(mode="json"))
            return True
        return await self.store.set_if_unchanged(path, expected_version, preview.model_dump(mode="json"))

    async def clear_last_message(self, chat_id: str, expected_version: Optional[str] = None) -> bool:
        path = last_message_path(chat_id)
        if expected_version is None:
            await self.store.delete(path)
            return True
        return await self.store.set_if_unchanged(path, expected_version, None)
