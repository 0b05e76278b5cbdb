from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    FILE = "file"  # Generic file type for other documents


class MediaRef(BaseModel):
    """Blob store reference attached to a media message"""
    url: str
    name: str
    size: int = Field(ge=0, description="Size in bytes")


class Message(BaseModel):
    id: str
    chatId: str
    senderId: str
    senderName: str
    senderPhotoURL: Optional[str] = None
    type: MessageType = MessageType.TEXT
    content: str = ""
    media: Optional[MediaRef] = None  # Present only for media messages
    timestamp: int
    isRead: bool = False
    readAt: Optional[int] = None
    isEdited: bool = False
    editedAt: Optional[int] = None

    def sort_key(self) -> Tuple[int, str]:
        return self.timestamp, self.id

    def to_store(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class SendMessageRequest(BaseModel):
    """Request body for sending a message"""
    content: str = ""
    type: MessageType = MessageType.TEXT
    media: Optional[MediaRef] = None


class EditMessageRequest(BaseModel):
    content: str


class MarkAllReadResponse(BaseModel):
    status: str = "success"
    messagesRead: int


class ProjectionFailure(BaseModel):
    """A denormalized field that could not be updated after a message write"""
    chatId: str
    messageId: str
    projection: str = Field(description="'lastMessage' or 'unreadCount'")
    error: str


class MarkReadResponse(BaseModel):
    status: str = "success"
    marked: bool = Field(description="False if the message was already read or sent by the reader")
