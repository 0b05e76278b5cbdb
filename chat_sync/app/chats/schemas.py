from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, computed_field

from ..messages.schemas import Message, MessageType
from ..users.identity import UserRole


class ParticipantInfo(BaseModel):
    """Participant metadata captured when the user joined the chat"""
    uid: str
    displayName: str
    photoURL: Optional[str] = None
    role: str = UserRole.USER.value
    joinedAt: int


class LastMessagePreview(BaseModel):
    """Preview of the newest message in a chat"""
    id: str
    senderId: str
    senderName: str
    content: str
    type: MessageType = MessageType.TEXT
    timestamp: int

    def sort_key(self) -> Tuple[int, str]:
        return self.timestamp, self.id

    @classmethod
    def from_message(cls, message: Message, max_length: int = 100) -> "LastMessagePreview":
        content = message.content or (message.media.name if message.media else "")
        # Create a preview (truncate if longer than max_length chars)
        if len(content) > max_length:
            content = content[:max_length] + "..."
        return cls(
            id=message.id,
            senderId=message.senderId,
            senderName=message.senderName,
            content=content,
            type=message.type,
            timestamp=message.timestamp,
        )


class Chat(BaseModel):
    id: str
    participants: List[str]
    participantsInfo: Dict[str, ParticipantInfo] = {}
    createdBy: str
    createdAt: int
    isGroup: bool = False
    groupName: Optional[str] = None
    groupPhotoURL: Optional[str] = None
    lastMessage: Optional[LastMessagePreview] = None
    unreadCount: Dict[str, int] = {}

    @computed_field
    @property
    def lastMessageAt(self) -> Optional[int]:
        return self.lastMessage.timestamp if self.lastMessage else None

    def activity_at(self) -> int:
        """Timestamp chat lists are ordered by"""
        return self.lastMessageAt if self.lastMessageAt is not None else self.createdAt

    @classmethod
    def from_store(cls, chat_id: str, data: dict) -> "Chat":
        return cls.model_validate({**data, "id": chat_id})

    def to_store(self) -> dict:
        # lastMessageAt is derived from lastMessage and never stored
        return self.model_dump(mode="json", exclude_none=True, exclude={"lastMessageAt"})


class CreateChatRequest(BaseModel):
    """Request body for creating a new chat"""
    participants: List[str]  # Must include the caller
    isGroup: bool = False
    groupName: Optional[str] = None
    groupPhotoURL: Optional[str] = None


class AddParticipantRequest(BaseModel):
    userId: str
