import logging
from typing import Dict, Optional

from ..config import Settings
from ..errors import ValidationError
from ..messages.schemas import MessageType

logger = logging.getLogger(__name__)

# None allows every content type
ALLOWED_CONTENT_TYPES: Dict[MessageType, Optional[set]] = {
    MessageType.IMAGE: {'image/jpeg', 'image/png', 'image/gif', 'image/webp'},
    MessageType.AUDIO: {'audio/mpeg', 'audio/mp3', 'audio/wav', 'audio/ogg', 'audio/mp4', 'audio/m4a'},
    MessageType.VIDEO: {'video/mp4', 'video/webm', 'video/ogg'},
    MessageType.FILE: None,
}


def max_size_for(message_type: MessageType, settings: Settings) -> int:
    return {
        MessageType.IMAGE: settings.max_image_size,
        MessageType.AUDIO: settings.max_audio_size,
        MessageType.VIDEO: settings.max_video_size,
        MessageType.FILE: settings.max_file_size,
    }[message_type]


def validate_upload(message_type: MessageType, content_type: Optional[str], size: int, settings: Settings) -> None:
    """
    Check an upload against the size limit and content types of its message type.

    Raises:
        ValidationError: If the upload can't be attached to a message of this type
    """
    if message_type == MessageType.TEXT:
        raise ValidationError("Text messages cannot carry media")

    max_size = max_size_for(message_type, settings)
    if size > max_size:
        logger.warning(f"Rejected {message_type.value} upload of {size} bytes (limit {max_size})")
        raise ValidationError(
            f"File too large. Maximum size for {message_type.value} is {max_size // (1024 * 1024)}MB"
        )

    allowed = ALLOWED_CONTENT_TYPES[message_type]
    content_type = content_type or 'application/octet-stream'
    if allowed is not None and content_type not in allowed:
        logger.warning(f"Rejected {message_type.value} upload with content type {content_type}")
        raise ValidationError(f"Invalid file type. Allowed types for {message_type.value}: {sorted(allowed)}")


def object_key(chat_id: str, message_type: MessageType, filename: str, timestamp: int) -> str:
    """Storage key of an attachment: ``chats/<chatId>/<type>s/<timestamp>_<name>``"""
    safe_name = filename.replace('/', '_').replace('\\', '_') or 'upload'
    return f"chats/{chat_id}/{message_type.value}s/{timestamp}_{safe_name}"
