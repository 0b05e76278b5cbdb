import json
import logging
from typing import Any, Dict

from .connection import get_redis_connection
from ..config import settings

logger = logging.getLogger(__name__)

NEW_MESSAGE = 'new_message'
MESSAGE_EDITED = 'message_edited'
MESSAGE_DELETED = 'message_deleted'
MESSAGE_READ = 'message_read'
CHAT_READ = 'chat_read'
PROJECTION_FAILED = 'projection_failed'


def chat_channel(chat_id: str) -> str:
    return f"chat:{chat_id}"


class EventPublisher:
    """
    Publishes chat events to Redis for the realtime fan-out instances.

    Publishing is best-effort: the store is the source of truth, so a lost
    event is logged and never fails the request that caused it.
    """

    def __init__(self, enabled: bool = True, instance_id: str = settings.instance_id):
        self.enabled = enabled
        self.instance_id = instance_id

    async def publish(self, event: str, chat_id: str, payload: Dict[str, Any]) -> int:
        """
        Returns:
            int: Number of subscribers that received the event, 0 if it was dropped
        """
        if not self.enabled:
            return 0

        channel = chat_channel(chat_id)
        message_event = {
            'event': event,
            'chatId': chat_id,
            'instanceId': self.instance_id,
            **payload,
        }
        try:
            redis_conn = await get_redis_connection()
            receivers = await redis_conn.publish(channel, json.dumps(message_event))
        except Exception as e:
            logger.error(f"Error publishing {event} event to Redis channel {channel}: {str(e)}")
            return 0

        logger.info(f"{event} event published to Redis channel {channel} with {receivers} receivers")
        return receivers
